"""
CDS hook manager: the orchestrator

One lane per hook type. A lane remembers the context it last fired with
(so repeats are dropped), a generation counter (so a slow firing that has
been overtaken cannot overwrite newer alerts) and at most one pending
debounce timer. Every firing for a hook type fans out to all services
registered for it; the merged cards replace that hook type's active
alerts wholesale.
"""
import asyncio
import json
from dataclasses import dataclass
from enum import Enum
from typing import (Any, Awaitable, Callable, Dict, List, Mapping, Optional,
                    Union)

from cds_hooks.core.cds_client import CDSHooksHttpClient
from cds_hooks.core.cds_protocol import (CardSuggestion, CDSCard, CDSService,
                                         FhirAuthorization, HookResponse)
from cds_hooks.core.config import get_settings
from cds_hooks.core.logging_config import LoggingConfig
from cds_hooks.core.metrics import cds_active_alerts, cds_hook_firings_total
from cds_hooks.core.presentation import (PresentationPolicy, WorkflowTrigger,
                                         group_by_presentation,
                                         load_presentation_config,
                                         load_workflow_triggers)
from cds_hooks.services.context_builder import (CommonContext,
                                                build_hook_request,
                                                split_trigger_context)
from cds_hooks.services.feedback_reporter import FeedbackReporter
from cds_hooks.services.hook_executor import HookExecutor
from cds_hooks.services.service_catalog import ServiceCatalog

logger = LoggingConfig.get_logger(__name__)

GroupedAlerts = Dict[str, List[CDSCard]]
HookFiredListener = Callable[[str, List[CDSCard]], Optional[Awaitable[None]]]
AlertActionCallback = Callable[[CDSCard, str, Optional[CardSuggestion]], Optional[Awaitable[None]]]


class LaneState(str, Enum):
    IDLE = "idle"
    DEBOUNCING = "debouncing"
    FIRING = "firing"
    ERROR = "error"


@dataclass
class HookLane:
    """Per hook type firing state"""
    hook_type: str
    last_key: Optional[str] = None
    generation: int = 0
    pending: Optional[asyncio.Task] = None
    state: LaneState = LaneState.IDLE
    error: Optional[str] = None


def dedup_key(hook_type: str, context: Mapping[str, Any]) -> str:
    """Key identifying "the same firing" for one lane"""
    return json.dumps(
        {
            "hookType": hook_type,
            "patientId": context.get("patientId"),
            "hookContext": dict(context),
        },
        sort_keys=True,
        default=str,
    )


async def _maybe_await(result: Any) -> None:
    if asyncio.iscoroutine(result) or isinstance(result, asyncio.Future):
        await result


class CDSHookManager:
    """
    Fires hooks on clinical workflow events and publishes the cards

    Typical use::

        manager = CDSHookManager(http=CDSHooksHttpClient())
        await manager.trigger_by_workflow_event("PATIENT_OPENED", {"patientId": "p1"})
        alerts = manager.get_active_alerts()
    """

    def __init__(
        self,
        http: Optional[CDSHooksHttpClient] = None,
        catalog: Optional[ServiceCatalog] = None,
        executor: Optional[HookExecutor] = None,
        reporter: Optional[FeedbackReporter] = None,
        user_id: Optional[str] = None,
        encounter_id: Optional[str] = None,
        disabled: Optional[bool] = None,
        debounce_delay_ms: Optional[int] = None,
        presentation_config: Optional[Mapping[str, PresentationPolicy]] = None,
        workflow_triggers: Optional[Mapping[str, str]] = None,
        fhir_server: Optional[str] = None,
        fhir_authorization: Optional[FhirAuthorization] = None,
        on_hook_fired: Optional[HookFiredListener] = None,
        on_alert_action: Optional[AlertActionCallback] = None,
    ):
        settings = get_settings()
        self.http = http or CDSHooksHttpClient()
        self.catalog = catalog or ServiceCatalog(self.http)
        self.executor = executor or HookExecutor(self.http)
        self.reporter = reporter or FeedbackReporter(self.http)

        self.user_id = user_id or settings.default_user_id
        self.encounter_id = encounter_id
        self.disabled = settings.cds_disabled if disabled is None else disabled
        self.debounce_delay_ms = (
            settings.debounce_delay_ms if debounce_delay_ms is None else debounce_delay_ms
        )
        self.presentation_config = dict(
            presentation_config
            if presentation_config is not None
            else load_presentation_config(settings.presentation_overrides)
        )
        self.workflow_triggers = dict(
            workflow_triggers
            if workflow_triggers is not None
            else load_workflow_triggers(settings.workflow_trigger_overrides)
        )
        self.fhir_server = fhir_server if fhir_server is not None else settings.fhir_server
        self.fhir_authorization = fhir_authorization
        self.on_hook_fired = on_hook_fired
        self.on_alert_action = on_alert_action

        self._lanes: Dict[str, HookLane] = {}
        self._active_alerts: Dict[str, GroupedAlerts] = {}

    # ------------------------------------------------------------------
    # Lanes
    # ------------------------------------------------------------------

    def _lane(self, hook_type: str) -> HookLane:
        lane = self._lanes.get(hook_type)
        if lane is None:
            lane = HookLane(hook_type=hook_type)
            self._lanes[hook_type] = lane
        return lane

    def lane_state(self, hook_type: str) -> LaneState:
        lane = self._lanes.get(hook_type)
        return lane.state if lane is not None else LaneState.IDLE

    @property
    def is_loading(self) -> bool:
        """True while any lane is firing"""
        return any(lane.state == LaneState.FIRING for lane in self._lanes.values())

    @property
    def error(self) -> Optional[str]:
        """Most recent unexpected firing error still on record, if any"""
        for lane in self._lanes.values():
            if lane.error:
                return lane.error
        return None

    # ------------------------------------------------------------------
    # Firing
    # ------------------------------------------------------------------

    async def fire(self, hook_type: str, context: Mapping[str, Any]) -> Optional[List[CDSCard]]:
        """
        Fire a hook now

        Args:
            hook_type: Hook name (known or custom)
            context: Trigger context; patientId plus hook-specific fields,
                userId/encounterId override the manager defaults

        Returns:
            The merged cards when this firing published them; None when it
            was skipped, deduplicated, overtaken or failed
        """
        patient_id = context.get("patientId")
        if self.disabled or not patient_id:
            cds_hook_firings_total.labels(hook_type=hook_type, outcome="skipped").inc()
            logger.debug(
                f"Skipping {hook_type} firing",
                extra={"hook_type": hook_type, "disabled": self.disabled, "has_patient": bool(patient_id)},
            )
            return None

        lane = self._lane(hook_type)
        key = dedup_key(hook_type, context)
        if key == lane.last_key:
            cds_hook_firings_total.labels(hook_type=hook_type, outcome="deduplicated").inc()
            logger.debug(f"Duplicate {hook_type} firing ignored", extra={"hook_type": hook_type})
            return None

        lane.last_key = key
        lane.generation += 1
        generation = lane.generation
        lane.state = LaneState.FIRING
        lane.error = None

        try:
            cards = await self._fan_out(hook_type, context)
        except Exception as e:
            cds_hook_firings_total.labels(hook_type=hook_type, outcome="error").inc()
            if lane.generation == generation:
                lane.state = LaneState.ERROR
                lane.error = str(e) or type(e).__name__
            logger.error(
                f"Unexpected error firing {hook_type}: {e}",
                extra={"hook_type": hook_type, "patient_id": patient_id},
                exc_info=True,
            )
            return None
        finally:
            if lane.generation == generation and lane.state == LaneState.FIRING:
                timer_pending = lane.pending is not None and not lane.pending.done()
                lane.state = LaneState.DEBOUNCING if timer_pending else LaneState.IDLE

        if lane.last_key != key or lane.generation != generation:
            cds_hook_firings_total.labels(hook_type=hook_type, outcome="stale").inc()
            logger.debug(f"Discarding overtaken {hook_type} firing", extra={"hook_type": hook_type})
            return None

        grouped = group_by_presentation(hook_type, cards, self.presentation_config)
        self._publish(hook_type, grouped)
        cds_hook_firings_total.labels(hook_type=hook_type, outcome="fired").inc()
        logger.info(
            f"Fired {hook_type}: {len(cards)} cards",
            extra={"hook_type": hook_type, "patient_id": patient_id, "cards_count": len(cards)},
        )
        await self._notify_fired(hook_type, cards)
        return cards

    async def _fan_out(self, hook_type: str, context: Mapping[str, Any]) -> List[CDSCard]:
        services = await self.catalog.by_hook_type(hook_type)
        if not services:
            logger.debug(f"No services registered for {hook_type}", extra={"hook_type": hook_type})
            return []

        common = CommonContext(
            patient_id=context["patientId"],
            user_id=context.get("userId") or self.user_id,
            encounter_id=context.get("encounterId") or self.encounter_id,
        )
        hook_fields = split_trigger_context(context)

        results = await asyncio.gather(
            *[self._execute(service, hook_type, common, hook_fields) for service in services],
            return_exceptions=True,
        )

        cards: List[CDSCard] = []
        for service, result in zip(services, results):
            if isinstance(result, BaseException):
                logger.warning(
                    f"Service {service.id} failed during {hook_type} fan-out: {result}",
                    extra={"service_id": service.id, "hook_type": hook_type},
                )
                continue
            cards.extend(result.cards)
        return cards

    async def _execute(
        self,
        service: CDSService,
        hook_type: str,
        common: CommonContext,
        hook_fields: Mapping[str, Any],
    ) -> HookResponse:
        request = build_hook_request(
            hook_type,
            service.id,
            common,
            hook_fields=hook_fields,
            fhir_server=self.fhir_server,
            fhir_authorization=self.fhir_authorization,
        )
        return await self.executor.execute(service.id, request, service_title=service.title or None)

    def fire_debounced(
        self,
        hook_type: str,
        context: Mapping[str, Any],
        delay_ms: Optional[int] = None,
    ) -> asyncio.Task:
        """
        Fire after a quiet period; a newer call for the same hook type
        cancels a timer that has not elapsed yet

        Returns the scheduled task (its result is fire()'s result, and it
        is cancelled if superseded).
        """
        lane = self._lane(hook_type)
        if lane.pending is not None and not lane.pending.done():
            lane.pending.cancel()

        delay = (self.debounce_delay_ms if delay_ms is None else delay_ms) / 1000
        task = asyncio.create_task(self._run_debounced(lane, hook_type, dict(context), delay))
        lane.pending = task
        if lane.state != LaneState.FIRING:
            lane.state = LaneState.DEBOUNCING
        return task

    async def _run_debounced(
        self,
        lane: HookLane,
        hook_type: str,
        context: Dict[str, Any],
        delay: float,
    ) -> Optional[List[CDSCard]]:
        try:
            await asyncio.sleep(delay)
        except asyncio.CancelledError:
            logger.debug(f"Debounced {hook_type} firing superseded", extra={"hook_type": hook_type})
            raise

        # Timer elapsed: from here on the firing runs to completion
        if lane.pending is asyncio.current_task():
            lane.pending = None
        if lane.state == LaneState.DEBOUNCING:
            lane.state = LaneState.IDLE
        return await self.fire(hook_type, context)

    async def trigger_by_workflow_event(
        self,
        event: Union[str, WorkflowTrigger],
        context: Mapping[str, Any],
        debounce: bool = False,
    ) -> Optional[List[CDSCard]]:
        """
        Map a workflow event to its hook type and fire it

        Unknown events are logged and ignored. With ``debounce`` the
        firing is scheduled and None is returned immediately.
        """
        event_name = event.value if isinstance(event, WorkflowTrigger) else event
        hook_type = self.workflow_triggers.get(event_name)
        if hook_type is None:
            logger.warning(f"Unknown workflow event: {event_name}", extra={"event": event_name})
            return None
        if debounce:
            self.fire_debounced(hook_type, context)
            return None
        return await self.fire(hook_type, context)

    # ------------------------------------------------------------------
    # Active alerts
    # ------------------------------------------------------------------

    def _publish(self, hook_type: str, grouped: GroupedAlerts) -> None:
        self._active_alerts[hook_type] = grouped
        cds_active_alerts.labels(hook_type=hook_type).set(
            sum(len(cards) for cards in grouped.values())
        )

    async def _notify_fired(self, hook_type: str, cards: List[CDSCard]) -> None:
        if self.on_hook_fired is None:
            return
        try:
            await _maybe_await(self.on_hook_fired(hook_type, list(cards)))
        except Exception as e:
            logger.error(f"on_hook_fired listener failed for {hook_type}: {e}", exc_info=True)

    def get_active_alerts(self) -> Dict[str, GroupedAlerts]:
        """Snapshot of published alerts: hook type -> mode -> cards"""
        return {
            hook_type: {mode: list(cards) for mode, cards in grouped.items()}
            for hook_type, grouped in self._active_alerts.items()
        }

    def clear(self, hook_type: str) -> None:
        """Remove the alerts of one hook type; other hook types are untouched"""
        if self._active_alerts.pop(hook_type, None) is not None:
            cds_active_alerts.labels(hook_type=hook_type).set(0)
        lane = self._lanes.get(hook_type)
        if lane is not None:
            # Let the same context fire again after an explicit clear
            lane.last_key = None

    def find_card(self, card_uuid: str) -> Optional[CDSCard]:
        """Look up a published card by uuid"""
        for grouped in self._active_alerts.values():
            for cards in grouped.values():
                for card in cards:
                    if card.uuid == card_uuid:
                        return card
        return None

    # ------------------------------------------------------------------
    # Clinician actions
    # ------------------------------------------------------------------

    async def handle_alert_action(
        self,
        card: CDSCard,
        action: str,
        suggestion: Optional[CardSuggestion] = None,
    ) -> asyncio.Task:
        """
        Report a clinician action on a card

        Feedback is scheduled without waiting for it; the on_alert_action
        callback runs afterwards, and its failures are logged only.
        Returns the feedback task.
        """
        task = self.reporter.submit(card, action, suggestion)
        if self.on_alert_action is not None:
            try:
                await _maybe_await(self.on_alert_action(card, action, suggestion))
            except Exception as e:
                logger.error(f"on_alert_action callback failed for card {card.uuid}: {e}", exc_info=True)
        return task

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    async def refresh_services(self) -> List[CDSService]:
        """Drop the discovery cache and fetch the catalog again"""
        self.catalog.invalidate()
        return await self.catalog.discover()

    def cache_stats(self) -> Dict[str, Any]:
        return {**self.catalog.stats(), **self.executor.stats()}

    async def aclose(self) -> None:
        """Cancel pending timers, let feedback finish and close the transport"""
        for lane in self._lanes.values():
            if lane.pending is not None and not lane.pending.done():
                lane.pending.cancel()
            lane.pending = None
        await self.reporter.drain()
        await self.http.aclose()

    async def __aenter__(self) -> "CDSHookManager":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()
