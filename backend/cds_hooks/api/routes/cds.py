"""
API routes exposing the CDS hook manager to the rendering layer
"""
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from cds_hooks.core.cds_protocol import CardSuggestion, CDSCard
from cds_hooks.core.logging_config import LoggingConfig
from cds_hooks.services.hook_manager import CDSHookManager, GroupedAlerts

logger = LoggingConfig.get_logger(__name__)
router = APIRouter(prefix="/api/cds", tags=["cds"])


def get_hook_manager(request: Request) -> CDSHookManager:
    """The manager owned by the application lifespan"""
    return request.app.state.hook_manager


class FireHookRequest(BaseModel):
    """Trigger context for an explicit hook firing"""
    context: Dict[str, Any] = Field(default_factory=dict)


class TriggerRequest(BaseModel):
    """Workflow event payload"""
    context: Dict[str, Any] = Field(default_factory=dict)
    debounce: bool = False


class AlertActionRequest(BaseModel):
    """Clinician action on a displayed card"""
    card: CDSCard
    action: str
    suggestion: Optional[CardSuggestion] = None


def _cards(cards: Optional[List[CDSCard]]) -> List[Dict[str, Any]]:
    return [card.to_wire() for card in cards or []]


def _grouped(grouped: GroupedAlerts) -> Dict[str, List[Dict[str, Any]]]:
    return {mode: _cards(cards) for mode, cards in grouped.items()}


@router.get("/services")
async def list_services(manager: CDSHookManager = Depends(get_hook_manager)):
    """Discovered services (cached; empty when discovery fails)"""
    services = await manager.catalog.discover()
    return {"services": [service.to_wire() for service in services]}


@router.post("/services/refresh")
async def refresh_services(manager: CDSHookManager = Depends(get_hook_manager)):
    """Drop the discovery cache and discover again"""
    services = await manager.refresh_services()
    return {"services": [service.to_wire() for service in services]}


@router.get("/alerts")
async def get_alerts(manager: CDSHookManager = Depends(get_hook_manager)):
    """
    Active alerts grouped by hook type, then by presentation mode
    """
    alerts = manager.get_active_alerts()
    return {
        "alerts": {hook_type: _grouped(grouped) for hook_type, grouped in alerts.items()},
        "loading": manager.is_loading,
        "error": manager.error,
    }


@router.delete("/alerts/{hook_type}")
async def clear_alerts(hook_type: str, manager: CDSHookManager = Depends(get_hook_manager)):
    manager.clear(hook_type)
    return {"hook_type": hook_type, "cleared": True}


@router.post("/hooks/{hook_type}/fire")
async def fire_hook(
    hook_type: str,
    request: FireHookRequest,
    manager: CDSHookManager = Depends(get_hook_manager),
):
    """
    Fire a hook now

    ``fired`` is false when the firing was skipped or deduplicated; the
    alerts returned are whatever is currently published for the hook.
    """
    cards = await manager.fire(hook_type, request.context)
    grouped = manager.get_active_alerts().get(hook_type, {})
    return {
        "hook_type": hook_type,
        "fired": cards is not None,
        "cards": _cards(cards),
        "alerts": _grouped(grouped),
    }


@router.post("/triggers/{event}")
async def trigger_workflow_event(
    event: str,
    request: TriggerRequest,
    manager: CDSHookManager = Depends(get_hook_manager),
):
    """Map a workflow event to its hook and fire (or debounce) it"""
    hook_type = manager.workflow_triggers.get(event)
    if hook_type is None:
        logger.warning(f"Rejected unknown workflow event: {event}", extra={"event": event})
        raise HTTPException(status_code=404, detail=f"Unknown workflow event: {event}")

    cards = await manager.trigger_by_workflow_event(event, request.context, debounce=request.debounce)
    return {
        "event": event,
        "hook_type": hook_type,
        "scheduled": request.debounce,
        "fired": cards is not None,
        "cards": _cards(cards),
    }


@router.post("/alerts/actions", status_code=202)
async def alert_action(
    request: AlertActionRequest,
    manager: CDSHookManager = Depends(get_hook_manager),
):
    """Record a clinician action; feedback is sent in the background"""
    await manager.handle_alert_action(request.card, request.action, request.suggestion)
    return {"card": request.card.uuid, "action": request.action, "accepted": True}


@router.get("/cache/stats")
async def cache_stats(manager: CDSHookManager = Depends(get_hook_manager)):
    return manager.cache_stats()
