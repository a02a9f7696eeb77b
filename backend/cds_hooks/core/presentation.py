"""
Presentation policies per hook type and the workflow event table

Both tables are static configuration: built-in defaults, optionally merged
with JSON overrides from settings once at startup.
"""
import json
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from cds_hooks.core.cds_protocol import CDSCard, HookType
from cds_hooks.core.logging_config import LoggingConfig

logger = LoggingConfig.get_logger(__name__)


class PresentationMode(str, Enum):
    BANNER = "banner"  # Top banner, critical alerts
    SIDEBAR = "sidebar"
    INLINE = "inline"
    POPUP = "popup"  # Modal dialog
    TOAST = "toast"
    CARD = "card"
    COMPACT = "compact"
    DRAWER = "drawer"


class PresentationPosition(str, Enum):
    TOP = "top"
    BOTTOM = "bottom"
    LEFT = "left"
    RIGHT = "right"
    CENTER = "center"


class AlertPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class PresentationPolicy(BaseModel):
    """How cards of one hook type are surfaced"""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    mode: PresentationMode
    position: PresentationPosition = PresentationPosition.TOP
    auto_hide: bool = Field(default=False, alias="autoHide")
    max_alerts: int = Field(default=5, ge=0, alias="maxAlerts")
    priority: AlertPriority = AlertPriority.MEDIUM


class WorkflowTrigger(str, Enum):
    PATIENT_OPENED = "PATIENT_OPENED"
    MEDICATION_PRESCRIBING = "MEDICATION_PRESCRIBING"
    ORDER_SIGNING = "ORDER_SIGNING"
    ORDER_SELECTING = "ORDER_SELECTING"
    ENCOUNTER_STARTING = "ENCOUNTER_STARTING"
    ENCOUNTER_DISCHARGE = "ENCOUNTER_DISCHARGE"
    LAB_REVIEW = "LAB_REVIEW"
    VITAL_ENTRY = "VITAL_ENTRY"


HOOK_PRESENTATION_CONFIG: Dict[str, PresentationPolicy] = {
    HookType.PATIENT_VIEW.value: PresentationPolicy(
        mode=PresentationMode.INLINE,
        position=PresentationPosition.TOP,
        max_alerts=5,
        priority=AlertPriority.MEDIUM,
    ),
    HookType.MEDICATION_PRESCRIBE.value: PresentationPolicy(
        mode=PresentationMode.POPUP,
        position=PresentationPosition.CENTER,
        max_alerts=10,
        priority=AlertPriority.HIGH,
    ),
    HookType.ORDER_SIGN.value: PresentationPolicy(
        mode=PresentationMode.BANNER,
        position=PresentationPosition.TOP,
        max_alerts=3,
        priority=AlertPriority.CRITICAL,
    ),
    HookType.ORDER_SELECT.value: PresentationPolicy(
        mode=PresentationMode.SIDEBAR,
        position=PresentationPosition.RIGHT,
        max_alerts=5,
        priority=AlertPriority.MEDIUM,
    ),
    HookType.ENCOUNTER_START.value: PresentationPolicy(
        mode=PresentationMode.DRAWER,
        position=PresentationPosition.RIGHT,
        max_alerts=7,
        priority=AlertPriority.MEDIUM,
    ),
    HookType.ENCOUNTER_DISCHARGE.value: PresentationPolicy(
        mode=PresentationMode.POPUP,
        position=PresentationPosition.CENTER,
        max_alerts=5,
        priority=AlertPriority.HIGH,
    ),
}

DEFAULT_HOOK_TYPE = HookType.PATIENT_VIEW.value

# Lab review and vital entry reuse patient-view
WORKFLOW_TRIGGERS: Dict[str, str] = {
    WorkflowTrigger.PATIENT_OPENED.value: HookType.PATIENT_VIEW.value,
    WorkflowTrigger.MEDICATION_PRESCRIBING.value: HookType.MEDICATION_PRESCRIBE.value,
    WorkflowTrigger.ORDER_SIGNING.value: HookType.ORDER_SIGN.value,
    WorkflowTrigger.ORDER_SELECTING.value: HookType.ORDER_SELECT.value,
    WorkflowTrigger.ENCOUNTER_STARTING.value: HookType.ENCOUNTER_START.value,
    WorkflowTrigger.ENCOUNTER_DISCHARGE.value: HookType.ENCOUNTER_DISCHARGE.value,
    WorkflowTrigger.LAB_REVIEW.value: HookType.PATIENT_VIEW.value,
    WorkflowTrigger.VITAL_ENTRY.value: HookType.PATIENT_VIEW.value,
}


_POLICY_ALIASES = {"auto_hide": "autoHide", "max_alerts": "maxAlerts"}


def _parse_overrides(raw: Optional[str], name: str) -> Dict[str, object]:
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as e:
        logger.warning(f"Ignoring invalid {name} overrides: {e}")
        return {}
    if not isinstance(parsed, dict):
        logger.warning(f"Ignoring {name} overrides: expected a JSON object")
        return {}
    return parsed


def load_presentation_config(overrides: Optional[str] = None) -> Dict[str, PresentationPolicy]:
    """
    Built-in policies merged with JSON overrides

    An override may be partial: fields it leaves out keep the built-in
    value for that hook type (or the default policy for a new hook type).
    """
    config = dict(HOOK_PRESENTATION_CONFIG)
    for hook_type, fields in _parse_overrides(overrides, "presentation").items():
        if not isinstance(fields, dict):
            logger.warning(f"Ignoring presentation override for {hook_type}: expected an object")
            continue
        base = config.get(hook_type, config[DEFAULT_HOOK_TYPE])
        merged = base.model_dump(by_alias=True)
        merged.update({_POLICY_ALIASES.get(key, key): value for key, value in fields.items()})
        try:
            config[hook_type] = PresentationPolicy.model_validate(merged)
        except ValidationError as e:
            logger.warning(f"Ignoring presentation override for {hook_type}: {e.error_count()} invalid field(s)")
    return config


def load_workflow_triggers(overrides: Optional[str] = None) -> Dict[str, str]:
    triggers = dict(WORKFLOW_TRIGGERS)
    for event, hook_type in _parse_overrides(overrides, "workflow trigger").items():
        if isinstance(hook_type, str) and hook_type:
            triggers[event] = hook_type
        else:
            logger.warning(f"Ignoring workflow trigger override for {event}: hook type must be a string")
    return triggers


def policy_for(hook_type: str, config: Optional[Mapping[str, PresentationPolicy]] = None) -> PresentationPolicy:
    """Policy for a hook type, falling back to the patient-view policy"""
    table = config if config is not None else HOOK_PRESENTATION_CONFIG
    return table.get(hook_type) or table.get(DEFAULT_HOOK_TYPE) or HOOK_PRESENTATION_CONFIG[DEFAULT_HOOK_TYPE]


def group_by_presentation(
    hook_type: str,
    cards: Iterable[CDSCard],
    config: Optional[Mapping[str, PresentationPolicy]] = None,
) -> Dict[str, List[CDSCard]]:
    """
    Bucket cards by presentation mode, each bucket cut to max_alerts

    Order is preserved. No cards means no buckets.
    """
    policy = policy_for(hook_type, config)
    grouped: Dict[str, List[CDSCard]] = {}
    for card in cards:
        bucket = grouped.setdefault(policy.mode.value, [])
        if len(bucket) < policy.max_alerts:
            bucket.append(card)
    return grouped
