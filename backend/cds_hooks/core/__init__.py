"""
Core building blocks: settings, logging, metrics, HTTP transport, protocol models and caches
"""
