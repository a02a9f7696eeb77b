"""
Hook executor: runs one hook request against one service
"""
import asyncio
import hashlib
import json
import time
from typing import Any, Dict, List, Optional

from pydantic import TypeAdapter, ValidationError

from cds_hooks.core.cache import TTLCache
from cds_hooks.core.cds_client import CDSHooksHttpClient
from cds_hooks.core.cds_protocol import CDSCard, HookRequest, HookResponse
from cds_hooks.core.config import get_settings
from cds_hooks.core.errors import (CDSHooksClientError, ExecutionFailure,
                                   ExecutionTimeout)
from cds_hooks.core.logging_config import LoggingConfig
from cds_hooks.core.metrics import (cds_service_request_duration_seconds,
                                    cds_service_requests_total)

logger = LoggingConfig.get_logger(__name__)

# Regenerated on every firing; must not take part in the cache key
VOLATILE_REQUEST_FIELDS = {"hook_instance"}

_CARD_LIST = TypeAdapter(List[Any])


def service_path(service_id: str) -> str:
    return f"/cds-services/{service_id}"


def validate_cards(service_id: str, raw_cards: Any) -> List[CDSCard]:
    """
    Validate a response's cards one at a time

    An invalid card is logged and dropped; its siblings are kept. A
    ``cards`` value that is not a list raises ValidationError.
    """
    cards: List[CDSCard] = []
    for index, raw in enumerate(_CARD_LIST.validate_python(raw_cards or [])):
        try:
            cards.append(CDSCard.model_validate(raw))
        except ValidationError as e:
            logger.warning(
                f"Dropping malformed card {index} from service {service_id}: {e.error_count()} invalid field(s)",
                extra={"service_id": service_id, "card_index": index, "details": str(e)},
            )
    return cards


class HookExecutor:
    """
    POST /cds-services/{id} with a short-lived response cache

    Identical requests (ignoring hookInstance) to the same service within
    the cache TTL are answered from memory. Any failure, including a
    timeout, yields an empty response for that service only.
    """

    def __init__(
        self,
        http: CDSHooksHttpClient,
        cache: Optional[TTLCache[HookResponse]] = None,
        timeout: Optional[float] = None,
    ):
        settings = get_settings()
        self.http = http
        self.cache = cache or TTLCache(settings.request_cache_ttl_seconds)
        self.timeout = timeout or settings.service_timeout_seconds

    @staticmethod
    def cache_key(service_id: str, request: HookRequest) -> str:
        """Hash of service id + request with volatile fields stripped"""
        payload = request.model_dump(
            mode="json",
            by_alias=True,
            exclude_none=True,
            exclude=VOLATILE_REQUEST_FIELDS,
        )
        key_data = f"{service_id}:{json.dumps(payload, sort_keys=True, default=str)}"
        return hashlib.sha256(key_data.encode()).hexdigest()

    async def execute(
        self,
        service_id: str,
        request: HookRequest,
        service_title: Optional[str] = None,
    ) -> HookResponse:
        """
        Execute a hook against one service

        Args:
            service_id: Service to call
            request: Hook request built for this service
            service_title: Stamped on each card with the service id

        Returns:
            HookResponse whose cards carry their origin; empty on failure
        """
        cache_key = self.cache_key(service_id, request)
        cached = self.cache.get(cache_key)
        if cached is not None:
            cds_service_requests_total.labels(service_id=service_id, outcome="cached").inc()
            logger.debug(f"Using cached response for service {service_id}", extra={"service_id": service_id})
            return cached.model_copy(update={"cards": list(cached.cards)})

        start_time = time.perf_counter()
        try:
            payload = await asyncio.wait_for(
                self.http.post_json(service_path(service_id), request.to_wire()),
                timeout=self.timeout,
            )
            body = payload or {}
            response = HookResponse.model_validate({**body, "cards": []} if isinstance(body, dict) else body)
            cards = validate_cards(service_id, body.get("cards"))
        except asyncio.TimeoutError:
            return self._degrade(ExecutionTimeout(
                f"Service did not answer within {self.timeout}s",
                service_id=service_id,
                hook_type=request.hook,
            ), "timeout")
        except CDSHooksClientError as e:
            return self._degrade(ExecutionFailure.from_error(e, service_id=service_id, hook_type=request.hook), "failure")
        except ValidationError as e:
            return self._degrade(ExecutionFailure(
                f"Malformed hook response: {e.error_count()} invalid field(s)",
                service_id=service_id,
                hook_type=request.hook,
                details=str(e),
            ), "failure")
        finally:
            cds_service_request_duration_seconds.labels(service_id=service_id).observe(
                time.perf_counter() - start_time
            )

        result = HookResponse(
            cards=[card.with_origin(service_id, service_title) for card in cards],
            system_actions=response.system_actions,
        )
        self.cache.set(cache_key, result)
        self.cache.prune()
        cds_service_requests_total.labels(service_id=service_id, outcome="success").inc()
        logger.debug(
            f"Service {service_id} returned {len(result.cards)} cards",
            extra={"service_id": service_id, "hook_type": request.hook},
        )
        return result

    def _degrade(self, failure: ExecutionFailure, outcome: str) -> HookResponse:
        cds_service_requests_total.labels(service_id=failure.service_id, outcome=outcome).inc()
        logger.warning(
            f"Failed to execute hook {failure.hook_type} for service {failure.service_id}: {failure.message}",
            extra=failure.to_dict(),
        )
        return HookResponse()

    def clear_cache(self) -> None:
        self.cache.invalidate()

    def stats(self) -> Dict[str, Any]:
        return {"request_cache_size": len(self.cache)}
