"""Retry policy for product uploads.

Maps a failed upload outcome to either "retry after N seconds" or "give up".
Intrusion-detection blocks (406) and server/network failures back off
exponentially with jitter; rate limiting (429) waits a fixed cooldown;
validation errors and other 4xx never retry.
"""

import random
from dataclasses import dataclass, field
from typing import Callable, Optional

from catalog_sync.config import (
    INTRUSION_BLOCK_STATUS,
    MAX_RETRIES,
    RATE_LIMIT_COOLDOWN,
    RATE_LIMIT_STATUS,
    RETRY_BACKOFF_BASE,
    RETRY_JITTER_MAX,
)
from catalog_sync.models import OutcomeStatus, UploadOutcome

__all__ = ["RetryDecision", "RetryPolicy", "Classifier"]


@dataclass
class RetryDecision:
    retry: bool
    delay: float = 0.0
    # Switch to the next client identity before retrying
    rotate_identity: bool = False
    reason: str = ""


Classifier = Callable[["RetryPolicy", UploadOutcome, int], RetryDecision]


@dataclass
class RetryPolicy:
    """Decides whether and when a failed upload is retried.

    ``attempt`` is zero-based: the first try is attempt 0, and at most
    ``max_retries`` further attempts follow it.
    """

    max_retries: int = MAX_RETRIES
    backoff_base: float = RETRY_BACKOFF_BASE
    jitter_max: float = RETRY_JITTER_MAX
    rate_limit_cooldown: float = RATE_LIMIT_COOLDOWN
    classifier: Optional[Classifier] = None
    rng: random.Random = field(default_factory=random.Random)

    def backoff(self, attempt: int) -> float:
        """base * 2^attempt plus up to ``jitter_max`` seconds of jitter."""
        return self.backoff_base * (2 ** attempt) + self.rng.uniform(0, self.jitter_max)

    def decide(self, outcome: UploadOutcome, attempt: int) -> RetryDecision:
        if outcome.status != OutcomeStatus.FAILED:
            return RetryDecision(retry=False, reason="not a failure")

        classify = self.classifier or default_classifier
        decision = classify(self, outcome, attempt)
        if decision.retry and attempt >= self.max_retries:
            return RetryDecision(retry=False, reason="retries exhausted")
        return decision


def default_classifier(policy: RetryPolicy, outcome: UploadOutcome, attempt: int) -> RetryDecision:
    if outcome.status_code == INTRUSION_BLOCK_STATUS:
        return RetryDecision(
            retry=True,
            delay=policy.backoff(attempt),
            rotate_identity=True,
            reason="intrusion detection",
        )

    if outcome.status_code == RATE_LIMIT_STATUS:
        return RetryDecision(retry=True, delay=policy.rate_limit_cooldown, reason="rate limited")

    if outcome.retriable:
        return RetryDecision(retry=True, delay=policy.backoff(attempt), reason="transient failure")

    return RetryDecision(retry=False, reason="not retriable")
