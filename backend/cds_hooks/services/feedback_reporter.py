"""
Feedback reporter: tells a service what the clinician did with its card
"""
import asyncio
from datetime import datetime
from typing import Optional, Set

from cds_hooks.core.cds_client import CDSHooksHttpClient
from cds_hooks.core.cds_protocol import (AcceptedSuggestion, CardSuggestion,
                                         CDSCard, Coding, FeedbackEntry,
                                         FeedbackOutcome, FeedbackRequest,
                                         OverrideReason)
from cds_hooks.core.errors import CDSHooksClientError, FeedbackFailure
from cds_hooks.core.logging_config import LoggingConfig
from cds_hooks.core.metrics import cds_feedback_total

logger = LoggingConfig.get_logger(__name__)

UNKNOWN_SERVICE_IDS = frozenset({"unknown", "unknown-service"})

DEFAULT_OVERRIDE_REASON = Coding(code="user-preference", display="User preference")


def feedback_path(service_id: str) -> str:
    return f"/cds-services/{service_id}/feedback"


def outcome_for_action(action: str) -> FeedbackOutcome:
    if action == "accept":
        return FeedbackOutcome.ACCEPTED
    if action == "reject":
        return FeedbackOutcome.OVERRIDDEN
    return FeedbackOutcome.IGNORED


def build_feedback(
    card: CDSCard,
    action: str,
    suggestion: Optional[CardSuggestion] = None,
    timestamp: Optional[datetime] = None,
) -> FeedbackRequest:
    """
    Feedback body for one card

    "accept" -> accepted (with the suggestion id when one was chosen),
    "reject" -> overridden with the default override reason, anything
    else -> ignored.
    """
    outcome = outcome_for_action(action)
    fields = {"card": card.uuid, "outcome": outcome}
    if timestamp is not None:
        fields["outcome_timestamp"] = timestamp
    if outcome == FeedbackOutcome.ACCEPTED and suggestion is not None:
        fields["accepted_suggestions"] = [AcceptedSuggestion(id=suggestion.uuid)]
    if outcome == FeedbackOutcome.OVERRIDDEN:
        fields["override_reasons"] = [OverrideReason(reason=DEFAULT_OVERRIDE_REASON)]
    return FeedbackRequest(feedback=[FeedbackEntry(**fields)])


class FeedbackReporter:
    """
    Best-effort POST /cds-services/{id}/feedback

    Cards without a known origin are skipped without a request. Failures
    are logged and swallowed: feedback is telemetry.
    """

    def __init__(self, http: CDSHooksHttpClient):
        self.http = http
        self._pending: Set[asyncio.Task] = set()

    async def report(
        self,
        card: CDSCard,
        action: str,
        suggestion: Optional[CardSuggestion] = None,
    ) -> bool:
        """Send feedback for a card; True when the service accepted it"""
        service_id = card.origin_service_id
        if not service_id or service_id in UNKNOWN_SERVICE_IDS:
            cds_feedback_total.labels(outcome="skipped").inc()
            logger.debug(f"No originating service for card {card.uuid}, skipping feedback")
            return False

        feedback = build_feedback(card, action, suggestion)
        try:
            await self.http.post_json(feedback_path(service_id), feedback.to_wire())
        except CDSHooksClientError as e:
            failure = FeedbackFailure.from_error(e, service_id=service_id)
            cds_feedback_total.labels(outcome="failure").inc()
            logger.warning(
                f"Failed to send CDS feedback for card {card.uuid}: {failure.message}",
                extra={**failure.to_dict(), "card_uuid": card.uuid},
            )
            return False

        cds_feedback_total.labels(outcome="sent").inc()
        logger.debug(
            f"Feedback sent to CDS service {service_id}",
            extra={"service_id": service_id, "card_uuid": card.uuid, "outcome": feedback.feedback[0].outcome.value},
        )
        return True

    def submit(
        self,
        card: CDSCard,
        action: str,
        suggestion: Optional[CardSuggestion] = None,
    ) -> asyncio.Task:
        """Schedule report() in the background and return its task"""
        task = asyncio.create_task(self.report(card, action, suggestion))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        """Wait for background submissions still in flight"""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
