"""
Confidence arithmetic for learned memories.

Pure functions with no side effects:

    reinforce(c)   = min(c + k_r * (1 - c), c_max)     on approval
    penalize(c)    = max(c * k_p, 0)                   on rejection
    contradict(c)  = c * k_c                           on a conflicting correction
    decay(c, days) = c * exp(-days / half_life)        for unused memories

Thresholds:
    >= auto_apply_threshold (0.85): value is applied without review
    >= suggestion_threshold (0.70): value is proposed to the reviewer
    otherwise:                      memory is only flagged
"""

import math
from enum import Enum

from invoice_memory.config import ConfidenceSettings, get_settings
from invoice_memory.utils.string_utils import normalize_whitespace


class ThresholdAction(str, Enum):
    """What a memory is allowed to do at its current confidence."""

    AUTO_APPLIED = "auto_applied"
    SUGGESTED = "suggested"
    FLAGGED = "flagged"


def _config(config: ConfidenceSettings | None) -> ConfidenceSettings:
    return config if config is not None else get_settings().confidence


def clamp(value: float, lower: float = 0.0, upper: float = 1.0) -> float:
    """Clamp a value into [lower, upper]."""
    return max(lower, min(upper, value))


def reinforce(confidence: float, config: ConfidenceSettings | None = None) -> float:
    """
    Increase confidence on approval with diminishing returns.

    The result approaches but never exceeds ``max_confidence``.

    Example:
        reinforce(0.6) -> 0.62
    """
    cfg = _config(config)
    c = clamp(confidence)
    return min(c + cfg.reinforcement_factor * (1.0 - c), cfg.max_confidence)


def penalize(confidence: float, config: ConfidenceSettings | None = None) -> float:
    """
    Decrease confidence multiplicatively on rejection.

    Example:
        penalize(0.6) -> 0.42
    """
    cfg = _config(config)
    return max(clamp(confidence) * cfg.rejection_penalty_factor, 0.0)


def contradict(confidence: float, config: ConfidenceSettings | None = None) -> float:
    """Decrease confidence when a human correction disagrees with the memory."""
    cfg = _config(config)
    return max(clamp(confidence) * cfg.contradiction_penalty_factor, 0.0)


def decay(
    confidence: float,
    days_since_last_use: float,
    config: ConfidenceSettings | None = None,
) -> float:
    """
    Continuous-time decay for memories that have not been used.

    Negative day counts are treated as zero.
    """
    cfg = _config(config)
    days = max(days_since_last_use, 0.0)
    return clamp(confidence) * math.exp(-days / cfg.decay_half_life_days)


def threshold_action(
    confidence: float,
    config: ConfidenceSettings | None = None,
) -> ThresholdAction:
    """
    Map a confidence to the action a memory may take.

    Example:
        threshold_action(0.85) -> ThresholdAction.AUTO_APPLIED
        threshold_action(0.70) -> ThresholdAction.SUGGESTED
        threshold_action(0.69) -> ThresholdAction.FLAGGED
    """
    cfg = _config(config)
    c = clamp(confidence)
    if c >= cfg.auto_apply_threshold:
        return ThresholdAction.AUTO_APPLIED
    if c >= cfg.suggestion_threshold:
        return ThresholdAction.SUGGESTED
    return ThresholdAction.FLAGGED


def normalize_vendor_key(name: str) -> str:
    """
    Canonical key used wherever a vendor is looked up or stored.

    Example:
        normalize_vendor_key("  Supplier   GmbH ") -> "supplier gmbh"
    """
    return normalize_whitespace(name).lower()
