"""Safety classification and recovery policy for scene renders.

classify() buckets a failure message into a coarse category for logging.
is_retryable() decides whether a failed attempt may be retried, and
select_strategy() picks how the next attempt is altered:

  after attempt 1: REFERENCE_SWAP (drop the style image, try a fresh
                   reference still, else rewrite the prompt)
  after attempt 2+: HARD_FALLBACK (replace the prompt with a generic one)

Empty results are treated as safety blocks. The provider gives no separate
signal for them, so a transient glitch burns a recovery step too.
"""

from enum import Enum

from mvstudio import MissingCredentialError
from mvstudio.services.providers.base import (
    DownloadError,
    NoVideoError,
    OperationFailedError,
    PollTimeoutError,
    SafetyRejection,
)


class SafetyCategory(str, Enum):
    VIOLENCE = "violence"
    SUBSTANCE = "substance"
    EXPLICIT = "explicit"
    MONEY = "money"
    GENERAL = "general"


class RecoveryStrategy(str, Enum):
    REFERENCE_SWAP = "reference_swap"
    HARD_FALLBACK = "hard_fallback"


# Checked in order; first match wins
_CATEGORY_KEYWORDS = (
    (SafetyCategory.VIOLENCE, ("violence", "weapon")),
    (SafetyCategory.SUBSTANCE, ("drug", "substance", "smoke")),
    (SafetyCategory.EXPLICIT, ("explicit", "sexual")),
    (SafetyCategory.MONEY, ("money", "cash")),
)

_RETRYABLE_TYPES = (
    SafetyRejection,
    NoVideoError,
    OperationFailedError,
    PollTimeoutError,
    DownloadError,
)

POLICY_KEYWORDS = (
    "violat", "usage guidelines",
    "safety", "content polic", "responsible ai",
)

_RETRYABLE_MARKERS = POLICY_KEYWORDS + (
    "blocked",
    "no video",
    "no frames",
    "failed",
)


def is_policy_message(message: str) -> bool:
    """True if a provider message reads as a content-policy refusal."""
    lowered = (message or "").lower()
    return any(kw in lowered for kw in POLICY_KEYWORDS)


def classify(message: str) -> SafetyCategory:
    """Map a failure message to a safety category. Pure and total."""
    lowered = (message or "").lower()
    for category, keywords in _CATEGORY_KEYWORDS:
        if any(kw in lowered for kw in keywords):
            return category
    return SafetyCategory.GENERAL


def is_retryable(exc: BaseException) -> bool:
    """Return True if a failed render attempt may be retried with recovery."""
    if isinstance(exc, MissingCredentialError):
        return False
    if isinstance(exc, _RETRYABLE_TYPES):
        return True
    lowered = str(exc).lower()
    return any(marker in lowered for marker in _RETRYABLE_MARKERS)


def select_strategy(attempt: int) -> RecoveryStrategy:
    """Choose the recovery strategy to apply after failed attempt number `attempt`.

    REFERENCE_SWAP also covers scenes without a style image: the reference
    still is tried first, and the prompt rewrite is the fallback.
    """
    if attempt <= 1:
        return RecoveryStrategy.REFERENCE_SWAP
    return RecoveryStrategy.HARD_FALLBACK
