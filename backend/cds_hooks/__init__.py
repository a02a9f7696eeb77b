"""
CDS Hooks orchestration: service discovery, hook fan-out, card presentation and feedback
"""
__version__ = "0.1.0"
