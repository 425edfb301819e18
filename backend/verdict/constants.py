"""
═══════════════════════════════════════════════════════════════════════════════
VERDICT ENGINE: CONSTANTS AND CONFIGURATION
Closed vocabularies for verdicts, rule conditions/actions and conflicts
═══════════════════════════════════════════════════════════════════════════════
"""

from enum import Enum
from dataclasses import dataclass
from typing import Dict, Optional


class Verdict(str, Enum):
    """Safety classification for a product or an ingredient"""
    RECOMMEND = 'recommend'
    CAUTION = 'caution'
    AVOID = 'avoid'
    # Ingredient-only values
    SAFE = 'safe'
    UNKNOWN = 'unknown'


class MatchType(str, Enum):
    EXACT = 'exact'
    ALIAS = 'alias'
    PARTIAL = 'partial'
    FUZZY = 'fuzzy'


class ConditionType(str, Enum):
    """What triggers a verdict rule"""
    CONTAINS_INGREDIENT = 'contains_ingredient'
    MISSING_INGREDIENT = 'missing_ingredient'
    INGREDIENT_VERDICT = 'ingredient_verdict'
    CATEGORY_MATCH = 'category_match'


class IngredientVerdictCondition(str, Enum):
    AVOID = 'avoid'
    CAUTION = 'caution'
    SAFE_ONLY = 'safe_only'


class RuleAction(str, Enum):
    """What happens when a verdict rule matches"""
    SET_AVOID = 'set_avoid'
    SET_CAUTION = 'set_caution'
    SET_RECOMMEND = 'set_recommend'
    BLOCK_PUBLISH = 'block_publish'
    WARN_ONLY = 'warn_only'


class Severity(str, Enum):
    ERROR = 'error'
    WARNING = 'warning'


class ConflictType(str, Enum):
    INGREDIENT_VERDICT_MISMATCH = 'ingredient_verdict_mismatch'
    CATEGORY_WARNING = 'category_warning'


class FreshnessStatus(str, Enum):
    FRESH = 'fresh'
    NEEDS_REVIEW = 'needs_review'
    STALE = 'stale'


@dataclass
class VerdictInfo:
    priority: int
    label: str
    action_required: str


# Worst-case ordering: higher priority dominates.
# SAFE/UNKNOWN ingredients never raise a product above RECOMMEND.
VERDICT_MAP: Dict[Verdict, VerdictInfo] = {
    Verdict.RECOMMEND: VerdictInfo(
        priority=1,
        label='Recommend',
        action_required='Publishing permitted'
    ),
    Verdict.SAFE: VerdictInfo(
        priority=1,
        label='Safe',
        action_required='Publishing permitted'
    ),
    Verdict.UNKNOWN: VerdictInfo(
        priority=1,
        label='Unknown',
        action_required='Ingredient needs research'
    ),
    Verdict.CAUTION: VerdictInfo(
        priority=2,
        label='Caution',
        action_required='Surface caution ingredients to readers'
    ),
    Verdict.AVOID: VerdictInfo(
        priority=3,
        label='Avoid',
        action_required='Must not be recommended'
    ),
}

# Product-level verdict for each worst-case priority
PRODUCT_VERDICT_BY_PRIORITY: Dict[int, Verdict] = {
    1: Verdict.RECOMMEND,
    2: Verdict.CAUTION,
    3: Verdict.AVOID,
}

# Ingredient verdicts accepted by the "safe_only" rule condition
SAFE_VERDICTS = frozenset({Verdict.SAFE, Verdict.RECOMMEND})

# Caller-side fetch cap for active rules
MAX_ACTIVE_RULES = 100

DEFAULT_FRESHNESS_THRESHOLD_DAYS = 180

# Stored spellings from before 'flagged' was renamed to 'avoid'
LEGACY_VERDICTS: Dict[str, Verdict] = {
    'flagged': Verdict.AVOID,
}


def coerce_verdict(value) -> Optional[Verdict]:
    """Map stored/legacy verdict strings onto the enum; None if unrecognized."""
    if value is None or value == '':
        return None
    if isinstance(value, Verdict):
        return value
    value = str(value).strip().lower()
    if value in LEGACY_VERDICTS:
        return LEGACY_VERDICTS[value]
    try:
        return Verdict(value)
    except ValueError:
        return None


def worst_verdict(verdicts) -> Optional[Verdict]:
    """
    Worst-case product verdict over a set of ingredient verdicts.
    avoid > caution > recommend; None when there is nothing to compare.
    """
    max_priority = 0
    for v in verdicts:
        v = coerce_verdict(v)
        if v is None:
            continue
        max_priority = max(max_priority, VERDICT_MAP[v].priority)
    return PRODUCT_VERDICT_BY_PRIORITY.get(max_priority)
