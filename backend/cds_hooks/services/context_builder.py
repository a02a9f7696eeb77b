"""
Hook request construction

Pure functions: given a hook type and raw fields, produce the HookRequest
body a service expects. The only input from the outside world is the
timestamp in hookInstance, and callers may pass that in.
"""
import time
from typing import Any, Callable, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from cds_hooks.core.cds_protocol import FhirAuthorization, HookRequest, HookType, known_hook_type

IDENTITY_FIELDS = ("patientId", "userId", "encounterId")


class CommonContext(BaseModel):
    """Identity fields every hook context carries"""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    patient_id: str = Field(..., alias="patientId")
    user_id: str = Field(..., alias="userId")
    encounter_id: Optional[str] = Field(default=None, alias="encounterId")

    def to_context(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


ContextHandler = Callable[[CommonContext, Mapping[str, Any]], Dict[str, Any]]


def _identity_only(common: CommonContext, fields: Mapping[str, Any]) -> Dict[str, Any]:
    return common.to_context()


def _medication_prescribe(common: CommonContext, fields: Mapping[str, Any]) -> Dict[str, Any]:
    context = common.to_context()
    context["medications"] = fields.get("medications") or []
    return context


def _order_sign(common: CommonContext, fields: Mapping[str, Any]) -> Dict[str, Any]:
    context = common.to_context()
    # Order forms historically sent "orders"
    draft_orders = fields.get("draftOrders")
    if draft_orders is None:
        draft_orders = fields.get("orders")
    context["draftOrders"] = draft_orders or []
    return context


def _passthrough(common: CommonContext, fields: Mapping[str, Any]) -> Dict[str, Any]:
    context = common.to_context()
    context.update(fields)
    return context


HOOK_CONTEXT_HANDLERS: Dict[HookType, ContextHandler] = {
    HookType.PATIENT_VIEW: _identity_only,
    HookType.MEDICATION_PRESCRIBE: _medication_prescribe,
    HookType.ORDER_SIGN: _order_sign,
    HookType.ORDER_SELECT: _passthrough,
    HookType.ENCOUNTER_START: _passthrough,
    HookType.ENCOUNTER_DISCHARGE: _passthrough,
}


def handler_for(hook_type: str) -> ContextHandler:
    """Context handler for a hook; custom hooks get the passthrough handler"""
    known = known_hook_type(hook_type)
    if known is None:
        return _passthrough
    return HOOK_CONTEXT_HANDLERS.get(known, _passthrough)


def hook_instance_id(service_id: str, timestamp: Optional[int] = None) -> str:
    """serviceId-timestamp; nanosecond clock so back-to-back firings differ"""
    return f"{service_id}-{timestamp if timestamp is not None else time.time_ns()}"


def split_trigger_context(trigger_context: Mapping[str, Any]) -> Dict[str, Any]:
    """Hook-specific part of a trigger context (identity fields removed)"""
    return {key: value for key, value in trigger_context.items() if key not in IDENTITY_FIELDS}


def build_hook_request(
    hook_type: str,
    service_id: str,
    common: CommonContext,
    hook_fields: Optional[Mapping[str, Any]] = None,
    prefetch: Optional[Dict[str, Any]] = None,
    fhir_server: Optional[str] = None,
    fhir_authorization: Optional[FhirAuthorization] = None,
    timestamp: Optional[int] = None,
) -> HookRequest:
    """
    Build the request body for one service and one firing

    Args:
        hook_type: Hook name (known or custom)
        service_id: Target service; prefixes hookInstance
        common: patientId/userId/encounterId
        hook_fields: Hook-specific fields (medications, draftOrders, ...)
        prefetch: Prefetched FHIR data keyed by the service's prefetch names
        fhir_server: FHIR base URL the service may call back into
        fhir_authorization: Bearer the service may use against fhir_server
        timestamp: Overrides the clock used in hookInstance

    Returns:
        A new HookRequest; never shared between firings
    """
    context = handler_for(hook_type)(common, hook_fields or {})
    return HookRequest(
        hook=hook_type,
        hook_instance=hook_instance_id(service_id, timestamp),
        context=context,
        prefetch=prefetch,
        fhir_server=fhir_server,
        fhir_authorization=fhir_authorization,
    )
