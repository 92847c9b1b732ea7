"""Webhook notifications for breakpoint lifecycle events.

Delivery failures are logged and never interrupt the run.
"""

from __future__ import annotations

import logging
from typing import Any

import requests

from process_orchestrator.runtime.breakpoints import BreakpointRecord

logger = logging.getLogger(__name__)


class WebhookNotifier:
    """POST a JSON payload when a breakpoint is created or released."""

    def __init__(
        self,
        url: str,
        *,
        timeout_seconds: float = 10.0,
        session: requests.Session | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.url = url
        self.timeout_seconds = timeout_seconds
        self._session = session or requests.Session()
        if headers:
            self._session.headers.update(headers)

    def breakpoint_created(self, breakpoint: BreakpointRecord) -> None:
        self._post("breakpoint.created", breakpoint)

    def breakpoint_released(self, breakpoint: BreakpointRecord) -> None:
        self._post("breakpoint.released", breakpoint)

    @staticmethod
    def payload(event: str, breakpoint: BreakpointRecord) -> dict[str, Any]:
        files = breakpoint.context.get("files") or []
        return {
            "event": event,
            "runId": breakpoint.run_id,
            "breakpointId": breakpoint.breakpoint_id,
            "title": breakpoint.title,
            "question": breakpoint.question,
            "status": breakpoint.status.value,
            "files": [f.get("path") for f in files if isinstance(f, dict)],
            "decision": breakpoint.decision.to_json() if breakpoint.decision else None,
        }

    def _post(self, event: str, breakpoint: BreakpointRecord) -> None:
        try:
            resp = self._session.post(
                self.url, json=self.payload(event, breakpoint), timeout=self.timeout_seconds
            )
            resp.raise_for_status()
        except requests.RequestException as e:
            logger.warning(
                "Webhook delivery failed",
                extra={
                    "event": event,
                    "run_id": breakpoint.run_id,
                    "breakpoint_id": breakpoint.breakpoint_id,
                    "error": str(e),
                },
            )
            return
        logger.debug(
            "Webhook delivered",
            extra={"event": event, "breakpoint_id": breakpoint.breakpoint_id},
        )
