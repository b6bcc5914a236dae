"""Exponential backoff with jitter, shared by every retry loop.

delay(attempt) = min(initial * multiplier ** (attempt - 1), max_backoff)
                 + uniform jitter in [0, jitter_max)

``attempt`` is 1-based and names the attempt that just failed.
"""

from __future__ import annotations

import random

import tenacity
from tenacity import RetryCallState

from airlift.models.config import RetryPolicy


def base_delay(attempt: int, policy: RetryPolicy) -> float:
    """Deterministic component of the backoff delay."""
    if attempt < 1:
        raise ValueError("attempt is 1-based")
    return min(
        policy.initial_backoff * policy.multiplier ** (attempt - 1),
        policy.max_backoff,
    )


def backoff_delay(
    attempt: int,
    policy: RetryPolicy,
    rng: random.Random | None = None,
) -> float:
    """Return the delay in seconds before retrying after ``attempt``."""
    jitter = (rng or random).random() * policy.jitter_max
    return base_delay(attempt, policy) + jitter


class wait_backoff(tenacity.wait.wait_base):
    """Tenacity wait strategy applying :func:`backoff_delay`."""

    def __init__(self, policy: RetryPolicy, rng: random.Random | None = None) -> None:
        self.policy = policy
        self.rng = rng

    def __call__(self, retry_state: RetryCallState) -> float:
        return backoff_delay(retry_state.attempt_number, self.policy, self.rng)
