"""
Health-check notifier for posting start/fail/complete signals.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Optional
from urllib import error as urllib_error
from urllib import parse as urllib_parse
from urllib import request as urllib_request


DEFAULT_TIMEOUT_SECONDS = 10.0

logger = logging.getLogger("cronguard.notifier")


class Event(str, Enum):
    START = "start"
    FAIL = "fail"
    COMPLETE = "complete"


def _non_empty(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    text = value.strip()
    return text if text else None


class HealthChecksNotifier:
    def __init__(self, base_url: Optional[str], timeout: float = DEFAULT_TIMEOUT_SECONDS) -> None:
        self.base_url = _non_empty(base_url)
        self.timeout = timeout if timeout > 0 else DEFAULT_TIMEOUT_SECONDS

    @property
    def enabled(self) -> bool:
        return bool(self.base_url)

    def url_for(self, event: Event) -> str:
        return f"{(self.base_url or '').rstrip('/')}/{event.value}"

    def notify(self, event: Event, run_id: str) -> bool:
        """POST ``rid=<run_id>`` to ``<base_url>/<event>``; never raises."""
        if not self.base_url:
            return False

        data = urllib_parse.urlencode({"rid": run_id}).encode("utf-8")
        headers = {"Content-Type": "application/x-www-form-urlencoded"}
        req = urllib_request.Request(url=self.url_for(event), data=data, method="POST", headers=headers)

        try:
            with urllib_request.urlopen(req, timeout=max(0.1, self.timeout)) as response:
                return 200 <= response.status < 300
        except urllib_error.URLError as exc:
            logger.debug("Health-check %s ping failed: %s", event.value, exc)
            return False
        except Exception as exc:
            logger.debug("Health-check %s ping failed unexpectedly: %s", event.value, exc)
            return False
