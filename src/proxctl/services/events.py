"""EventService — read back the notification WAL."""

from __future__ import annotations

from proxctl.services.base import BaseService
from proxctl.services.result import ServiceResult
from proxctl.services.telemetry import traced


class EventService(BaseService):
    @traced
    def list_events(self, *, limit: int = 20) -> ServiceResult:
        bus = self._ws.event_bus
        if bus is None:
            return ServiceResult.fail("events", "NOT_FOUND", "Event bus is not initialized")
        if limit <= 0:
            return ServiceResult.fail("events", "INVALID_ARGUMENT", "limit must be positive")
        events = bus.recent(limit)
        return ServiceResult(ok=True, op="events", data={"events": events, "count": len(events)})

    @traced
    def retry_pending(self) -> ServiceResult:
        """Re-dispatch pending and failed events synchronously."""
        bus = self._ws.event_bus
        if bus is None:
            return ServiceResult.fail("events_retry", "NOT_FOUND", "Event bus is not initialized")
        retried = bus.drain()
        return ServiceResult(
            ok=True, op="events_retry", data={"events": retried, "count": len(retried)}
        )
