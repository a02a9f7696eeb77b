"""
CDS Hooks wire protocol models (discovery, hook request/response, feedback)
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


class HookType(str, Enum):
    """Hook types the manager knows how to build requests for"""
    PATIENT_VIEW = "patient-view"
    MEDICATION_PRESCRIBE = "medication-prescribe"
    ORDER_SIGN = "order-sign"
    ORDER_SELECT = "order-select"
    ENCOUNTER_START = "encounter-start"
    ENCOUNTER_DISCHARGE = "encounter-discharge"


def known_hook_type(value: str) -> Optional[HookType]:
    """Return the HookType for a hook name, or None for custom hooks"""
    try:
        return HookType(value)
    except ValueError:
        return None


class CardIndicator(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class SelectionBehavior(str, Enum):
    AT_MOST_ONE = "at-most-one"
    ANY = "any"


class FeedbackOutcome(str, Enum):
    ACCEPTED = "accepted"
    OVERRIDDEN = "overridden"
    IGNORED = "ignored"


class CDSModel(BaseModel):
    """Base for wire models: camelCase aliases, unknown fields ignored"""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_wire(self) -> Dict[str, Any]:
        """Serialise the way CDS services expect it"""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class FrozenCDSModel(CDSModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)


# ============================================================================
# Discovery
# ============================================================================

class CDSService(FrozenCDSModel):
    """A decision-support service advertised by the discovery endpoint"""
    id: str
    hook: str
    title: str = ""
    description: str = ""
    prefetch: Dict[str, str] = Field(default_factory=dict)
    usage_requirements: Optional[str] = Field(default=None, alias="usageRequirements")


class CDSServicesResponse(CDSModel):
    services: List[CDSService] = Field(default_factory=list)


# ============================================================================
# Cards
# ============================================================================

class Coding(FrozenCDSModel):
    code: str
    display: Optional[str] = None
    system: Optional[str] = None


class CardSource(FrozenCDSModel):
    label: str
    url: Optional[str] = None
    icon: Optional[str] = None
    topic: Optional[Coding] = None


class CardLink(FrozenCDSModel):
    label: str
    url: str
    type: Literal["absolute", "smart"] = "absolute"
    app_context: Optional[str] = Field(default=None, alias="appContext")


class CardAction(FrozenCDSModel):
    type: str
    description: str = ""
    resource: Optional[Any] = None
    resource_id: Optional[str] = Field(default=None, alias="resourceId")


class CardSuggestion(FrozenCDSModel):
    label: str
    uuid: str = Field(default_factory=lambda: str(uuid4()))
    is_recommended: Optional[bool] = Field(default=None, alias="isRecommended")
    actions: List[CardAction] = Field(default_factory=list)


class CDSCard(FrozenCDSModel):
    """
    Advisory card returned by a service

    serviceId/serviceTitle are not part of the service response: the
    executor stamps them so feedback can find its way back.
    """
    uuid: str = Field(default_factory=lambda: str(uuid4()))
    summary: str
    detail: Optional[str] = None
    indicator: CardIndicator = CardIndicator.INFO
    source: Optional[CardSource] = None
    suggestions: List[CardSuggestion] = Field(default_factory=list)
    selection_behavior: Optional[SelectionBehavior] = Field(default=None, alias="selectionBehavior")
    override_reasons: List[Coding] = Field(default_factory=list, alias="overrideReasons")
    links: List[CardLink] = Field(default_factory=list)
    origin_service_id: Optional[str] = Field(default=None, alias="serviceId")
    origin_service_title: Optional[str] = Field(default=None, alias="serviceTitle")

    def with_origin(self, service_id: str, service_title: Optional[str] = None) -> "CDSCard":
        """Copy of this card annotated with the service that produced it"""
        return self.model_copy(update={
            "origin_service_id": service_id,
            "origin_service_title": service_title,
        })

    def suggestion(self, suggestion_uuid: str) -> Optional[CardSuggestion]:
        for item in self.suggestions:
            if item.uuid == suggestion_uuid:
                return item
        return None


# ============================================================================
# Hook request / response
# ============================================================================

class FhirAuthorization(FrozenCDSModel):
    """Opaque bearer handed to services so they can call back into FHIR"""
    access_token: str
    token_type: str = "Bearer"
    expires_in: Optional[int] = None
    scope: Optional[str] = None
    subject: Optional[str] = None


class HookRequest(FrozenCDSModel):
    hook: str
    hook_instance: str = Field(..., alias="hookInstance")
    context: Dict[str, Any] = Field(default_factory=dict)
    prefetch: Optional[Dict[str, Any]] = None
    fhir_server: Optional[str] = Field(default=None, alias="fhirServer")
    fhir_authorization: Optional[FhirAuthorization] = Field(default=None, alias="fhirAuthorization")

    @property
    def patient_id(self) -> Optional[str]:
        return self.context.get("patientId")


class HookResponse(CDSModel):
    cards: List[CDSCard] = Field(default_factory=list)
    system_actions: Optional[List[CardAction]] = Field(default=None, alias="systemActions")


# ============================================================================
# Feedback
# ============================================================================

class AcceptedSuggestion(FrozenCDSModel):
    id: str


class OverrideReason(FrozenCDSModel):
    reason: Coding
    user_comment: Optional[str] = Field(default=None, alias="userComment")


class FeedbackEntry(FrozenCDSModel):
    card: str
    outcome: FeedbackOutcome
    outcome_timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        alias="outcomeTimestamp",
    )
    accepted_suggestions: Optional[List[AcceptedSuggestion]] = Field(default=None, alias="acceptedSuggestions")
    override_reasons: Optional[List[OverrideReason]] = Field(default=None, alias="overrideReasons")


class FeedbackRequest(CDSModel):
    feedback: List[FeedbackEntry] = Field(default_factory=list)
