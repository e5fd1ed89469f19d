"""Bounded retry with exponential backoff for AI backend calls."""

from __future__ import annotations

import logging
import math
import random
import re
import time
from dataclasses import dataclass
from typing import Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS = frozenset({404, 429, 503})

# Compatibility shim: some backends only report transient failures in the
# message text. Structured status codes are checked first.
_RETRYABLE_TEXT_RE = re.compile(r"\b(?:404|429|503|overloaded|temporarily|quota|rate)\b", re.IGNORECASE)

# "Please retry in 17.369220798s" or '"retryDelay": "17s"'
_RETRY_IN_RE = re.compile(r"retry.*?(\d+\.?\d*)\s*s", re.IGNORECASE)
_RETRY_DELAY_RE = re.compile(r"retryDelay.*?(\d+)", re.IGNORECASE)


@dataclass(frozen=True)
class RetryPolicy:
    """Delays are seconds; ``max_retries`` excludes the first attempt."""

    max_retries: int = 2
    base_delay: float = 2.0
    max_delay: float = 20.0
    jitter: tuple = (0.8, 1.2)

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1


def error_status(error: BaseException) -> int | None:
    status = getattr(error, "status", None)
    if status is None:
        status = getattr(error, "status_code", None)
    if status is None:
        response = getattr(error, "response", None)
        status = getattr(response, "status_code", None)
    try:
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None


def is_retryable(error: BaseException) -> bool:
    """True for rate-limit, overload and service-unavailable failures."""
    if error_status(error) in RETRYABLE_STATUS:
        return True
    return _RETRYABLE_TEXT_RE.search(str(error)) is not None


def suggested_delay(error: BaseException | None) -> float | None:
    """Server-suggested wait in seconds (plus 0.5s margin), if the error names one."""
    if error is None:
        return None
    message = str(error)
    match = _RETRY_IN_RE.search(message) or _RETRY_DELAY_RE.search(message)
    if not match:
        return None
    millis = math.ceil(float(match.group(1)) * 1000) + 500
    return millis / 1000.0


def backoff_delay(policy: RetryPolicy, retry: int, error: BaseException | None = None,
                  rand: Callable[[float, float], float] = random.uniform) -> float:
    """Seconds to wait before retry number ``retry`` (1-based)."""
    hinted = suggested_delay(error)
    if hinted is not None:
        return min(hinted, policy.max_delay)
    delay = min(policy.base_delay * 2 ** (retry - 1), policy.max_delay)
    return delay * rand(*policy.jitter)


class RetryController:
    """Runs a call up to ``policy.max_attempts`` times, then defers to a fallback.

    Non-retryable errors stop immediately. The fallback receives the last
    error and its return value becomes the result; nothing is raised.
    """

    def __init__(self, policy: RetryPolicy | None = None,
                 sleep: Callable[[float], None] = time.sleep,
                 rand: Callable[[float, float], float] = random.uniform):
        self.policy = policy or RetryPolicy()
        self.sleep = sleep
        self.rand = rand

    def run(self, call: Callable[[], T], fallback: Callable[[BaseException], T],
            label: str = "AI call") -> T:
        last_error: BaseException | None = None
        attempts = self.policy.max_attempts
        for attempt in range(attempts):
            if attempt > 0:
                delay = backoff_delay(self.policy, attempt, last_error, self.rand)
                logger.info("Retry attempt %d/%d for %s after %.1fs",
                            attempt, self.policy.max_retries, label, delay)
                self.sleep(delay)
            try:
                result = call()
            except Exception as e:
                last_error = e
                retryable = is_retryable(e)
                logger.warning("%s failed (attempt %d/%d, %s): %s", label, attempt + 1, attempts,
                               "retryable" if retryable else "not retryable", str(e)[:200])
                if not retryable:
                    break
                continue
            if attempt > 0:
                logger.info("%s succeeded on retry attempt %d", label, attempt)
            return result
        logger.warning("%s giving up; using fallback", label)
        return fallback(last_error)
