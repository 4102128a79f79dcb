"""Sales settings: stage table, lead sources, lost reasons.

Stage validation and probability derivation take the table as an argument
instead of reading a global singleton, so callers (and tests) can inject
their own pipeline.
"""

import math
from dataclasses import dataclass
from typing import Optional, Tuple

from .errors import ValidationError


@dataclass(frozen=True)
class SalesSettings:
    sales_stages: Tuple[str, ...] = (
        "New", "Contacted", "Qualified", "Proposal Sent", "Negotiation", "Won", "Lost",
    )
    lead_sources: Tuple[str, ...] = (
        "Website", "Reference", "Cold Call", "Marketing Campaign",
        "Social Media", "Trade Show", "Partner", "Other",
    )
    lost_reasons: Tuple[str, ...] = (
        "Price", "Competition", "No Response", "Not Interested",
        "Budget Constraints", "Timing", "Other",
    )

    @classmethod
    def from_mapping(cls, data):
        """Build from a config dict; missing or empty lists fall back to the defaults."""
        data = data or {}
        kwargs = {}
        for key in ("sales_stages", "lead_sources", "lost_reasons"):
            val = data.get(key)
            if val:
                kwargs[key] = tuple(val)
        return cls(**kwargs)


DEFAULT_SALES_SETTINGS = SalesSettings()


def validate_stage(stage: str, settings: SalesSettings = DEFAULT_SALES_SETTINGS) -> str:
    stage = (stage or "").strip()
    if stage not in settings.sales_stages:
        raise ValidationError(f"Unknown sales stage: {stage!r}")
    return stage


def validate_lost_reason(reason: str, settings: SalesSettings = DEFAULT_SALES_SETTINGS) -> str:
    if reason not in settings.lost_reasons:
        raise ValidationError(f"Unknown lost reason: {reason!r}")
    return reason


def stage_probability(stage: str, settings: SalesSettings = DEFAULT_SALES_SETTINGS) -> Optional[int]:
    """Win probability implied by a stage, or None to leave it unchanged.

    Won is 100 and Lost is 0. Other stages map their position in the table
    onto 0..100, with 0 lifted to 10 and 100 capped at 90.
    """
    if not stage:
        return None
    if stage == "Won":
        return 100
    if stage == "Lost":
        return 0

    stages = settings.sales_stages
    if stage not in stages or len(stages) < 2:
        return None

    idx = stages.index(stage)
    p = int(math.floor(idx / (len(stages) - 1) * 100 + 0.5))
    if p == 0:
        p = 10
    if p == 100:
        p = 90
    return p


def set_lead_stage(lead, stage: str, settings: SalesSettings = DEFAULT_SALES_SETTINGS):
    """Validate and assign ``stage`` on a lead, re-deriving its probability."""
    lead.stage = validate_stage(stage, settings)
    p = stage_probability(lead.stage, settings)
    if p is not None:
        lead.probability = p
    return lead
