"""
Audit trail for authentication and authorization events.

Events go to the ``gatekeeper.audit`` structlog logger. Repeated failures
from one address or IP inside a sliding window are additionally reported
as ``repeated_failure`` so they can be alerted on.
"""

import time
from collections import deque
from datetime import datetime, timezone
from typing import Any, Callable, Deque, Dict, Optional

from shared.logging import get_logger


class AuditLogger:
    """Structured audit event sink with repeated-failure detection."""

    def __init__(self,
                 failure_threshold: int = 5,
                 window_seconds: float = 300.0,
                 clock: Optional[Callable[[], float]] = None):
        self.failure_threshold = failure_threshold
        self.window_seconds = window_seconds
        self.logger = get_logger("gatekeeper.audit")
        self._clock = clock or time.monotonic
        self._failures: Dict[str, Deque[float]] = {}
        self._last_sweep = self._clock()

    def record(self,
               action: str,
               result: str,
               address: Optional[str] = None,
               ip: Optional[str] = None,
               reason: Optional[str] = None,
               **details: Any) -> Dict[str, Any]:
        """Record one audit event and return it."""
        event = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "action": action,
            "result": result,
            "address": address,
            "ip": ip,
        }
        if reason:
            event["reason"] = reason
        event.update(details)

        if result == "success":
            self.logger.info("audit", **event)
        else:
            self.logger.warning("audit", **event)
            self._track_failure(action, address, ip)
        return event

    def success(self, action: str, address: Optional[str] = None, ip: Optional[str] = None, **details: Any):
        return self.record(action, "success", address=address, ip=ip, **details)

    def failure(self, action: str, reason: str, address: Optional[str] = None, ip: Optional[str] = None,
                **details: Any):
        return self.record(action, "failure", address=address, ip=ip, reason=reason, **details)

    def failure_count(self, key: str) -> int:
        window = self._failures.get(key)
        if not window:
            return 0
        self._prune(window)
        if not window:
            del self._failures[key]
        return len(window)

    @property
    def tracked(self) -> int:
        return len(self._failures)

    def _track_failure(self, action: str, address: Optional[str], ip: Optional[str]):
        if self._clock() - self._last_sweep >= self.window_seconds:
            self._sweep()
        for key in (f"address:{address}" if address else None, f"ip:{ip}" if ip else None):
            if key is None:
                continue
            window = self._failures.setdefault(key, deque())
            window.append(self._clock())
            self._prune(window)
            if len(window) == self.failure_threshold:
                self.logger.warning(
                    "repeated_failure",
                    action=action,
                    subject=key,
                    failures=len(window),
                    window_seconds=self.window_seconds,
                )

    def _sweep(self):
        """Drop subjects with no failures left inside the window."""
        for key in list(self._failures):
            window = self._failures[key]
            self._prune(window)
            if not window:
                del self._failures[key]
        self._last_sweep = self._clock()

    def _prune(self, window: Deque[float]):
        cutoff = self._clock() - self.window_seconds
        while window and window[0] <= cutoff:
            window.popleft()
