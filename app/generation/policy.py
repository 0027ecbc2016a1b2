"""
Tier/Credit Policy - static tables that decide how much work a request buys.

    Tier       passes   mode       cost
    FREE       0        -          (UPGRADE_REQUIRED)
    REFINED    1        REFINED    1
    ENHANCED   2        ENHANCED   2
    ULTIMATE   3        ULTIMATE   4
    PRO        1        REFINED    1     (legacy tier)

An edit of an existing page is a single pass at EDIT_COST, whatever the
mode; it still requires a tier that can generate.

The pass count of a session is the pass count of its mode, so a legacy PRO
account runs exactly what a REFINED account runs.
"""

from enum import Enum

from app.core.errors import ErrorCode, GenerationError


class Tier(str, Enum):
    FREE = "FREE"
    REFINED = "REFINED"
    ENHANCED = "ENHANCED"
    ULTIMATE = "ULTIMATE"
    PRO = "PRO"


class GenerationMode(str, Enum):
    REFINED = "REFINED"
    ENHANCED = "ENHANCED"
    ULTIMATE = "ULTIMATE"


TIER_PASSES = {
    Tier.FREE: 0,
    Tier.REFINED: 1,
    Tier.ENHANCED: 2,
    Tier.ULTIMATE: 3,
    Tier.PRO: 1,
}

MODE_PASSES = {
    GenerationMode.REFINED: 1,
    GenerationMode.ENHANCED: 2,
    GenerationMode.ULTIMATE: 3,
}

MODE_COST = {
    GenerationMode.REFINED: 1,
    GenerationMode.ENHANCED: 2,
    GenerationMode.ULTIMATE: 4,
}

EDIT_PASSES = 1
EDIT_COST = 1

TIER_MODE = {
    Tier.REFINED: GenerationMode.REFINED,
    Tier.PRO: GenerationMode.REFINED,
    Tier.ENHANCED: GenerationMode.ENHANCED,
    Tier.ULTIMATE: GenerationMode.ULTIMATE,
}


def parse_tier(value: str) -> Tier:
    """Unknown stored tiers are treated as FREE."""
    try:
        return Tier(value)
    except ValueError:
        return Tier.FREE


def passes_for(tier: Tier) -> int:
    return TIER_PASSES[tier]


def passes_for_mode(mode: GenerationMode) -> int:
    return MODE_PASSES[mode]


def cost_for(mode: GenerationMode) -> int:
    return MODE_COST[mode]


def mode_for(tier: Tier) -> GenerationMode:
    """
    Raises:
        GenerationError(UPGRADE_REQUIRED): tier has no generation passes
    """
    mode = TIER_MODE.get(tier)
    if mode is None:
        raise GenerationError(ErrorCode.UPGRADE_REQUIRED, f"tier {tier.value} cannot generate")
    return mode
