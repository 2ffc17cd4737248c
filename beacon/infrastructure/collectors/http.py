# ==============================================================================
# HTTP Collector
# ==============================================================================
"""
Collector implementation that POSTs batches to a remote endpoint.

Payload (JSON):
    {
        "events": [<event>, ...],      # camelCase event wire form
        "session": <session snapshot>
    }

Transient connection errors and timeouts are retried with a light tenacity
policy. The delivery timeout is a budget for the whole call: each attempt
gets an equal share of it and no attempt starts after it runs out, so
retries never outlive the EventQueue's wait. Any other failure (or exhausted
retries) is reported as a failed delivery so the EventQueue re-queues the
batch.
"""

import logging
import time

import requests

from beacon.base import Collector
from beacon.core.models import Event, Session
from beacon.utils.config import TrackerSettings, get_settings
from beacon.utils.retry import HTTP_RETRY_EXCEPTIONS, RETRY_ATTEMPTS_LIGHT, retry_light

logger = logging.getLogger(__name__)


class HttpCollector(Collector):
    """POST event batches to the analytics collector endpoint."""

    def __init__(
        self,
        endpoint: str | None = None,
        session: requests.Session | None = None,
        default_timeout: float | None = None,
        settings: TrackerSettings | None = None,
    ):
        """
        Initialize the HTTP collector.

        Args:
            endpoint: Collector URL. If None, uses settings.
            session: Optional requests session (connection pooling, test doubles)
            default_timeout: Timeout used when deliver() is called without one
            settings: Tracker settings. Loaded from the environment if None.
        """
        settings = settings or get_settings().tracker
        self._endpoint = endpoint or settings.endpoint
        self._http = session or requests.Session()
        self._default_timeout = default_timeout or settings.send_timeout_seconds

    @property
    def endpoint(self) -> str:
        return self._endpoint

    @retry_light(HTTP_RETRY_EXCEPTIONS, logger)
    def _post(self, payload: dict, attempt_timeout: float, deadline: float) -> requests.Response:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise requests.Timeout("Delivery budget exhausted")
        response = self._http.post(
            self._endpoint, json=payload, timeout=min(attempt_timeout, remaining)
        )
        response.raise_for_status()
        return response

    def deliver(self, batch: list[Event], session: Session, timeout: float | None = None) -> bool:
        payload = {
            "events": [event.to_message() for event in batch],
            "session": session.to_message(),
        }
        try:
            budget = timeout or self._default_timeout
            self._post(
                payload,
                budget / RETRY_ATTEMPTS_LIGHT,
                deadline=time.monotonic() + budget,
            )
        except requests.RequestException as e:
            logger.error(
                "Failed to send %d analytics events to %s: %s", len(batch), self._endpoint, e
            )
            return False
        return True

    def close(self) -> None:
        self._http.close()
