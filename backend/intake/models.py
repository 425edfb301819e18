"""
models.py — Pydantic models for records the engine reads from its stores.
Every catalog entry, rule and category crosses the store boundary as one of
these, so malformed admin data is rejected before it can influence a verdict.
"""

from typing import Any, Optional
from pydantic import BaseModel, Field, field_validator

from verdict.constants import (
    Verdict, MatchType, ConditionType, IngredientVerdictCondition, RuleAction,
    DEFAULT_FRESHNESS_THRESHOLD_DAYS, LEGACY_VERDICTS,
)


class IngredientCatalogEntry(BaseModel):
    """A canonical ingredient, addressable by exact name or alias."""
    id: int
    canonical_name: str = Field(min_length=1)
    verdict: Verdict = Verdict.UNKNOWN
    aliases: list[str] = []
    reason: Optional[str] = None

    @field_validator('verdict', mode='before')
    @classmethod
    def legacy_verdict(cls, v):
        return LEGACY_VERDICTS.get(v, v) if isinstance(v, str) else v

    @field_validator('aliases', mode='before')
    @classmethod
    def drop_blank_aliases(cls, v):
        if v is None:
            return []
        # Stored form may be [{'alias': '...'}] or plain strings
        out = []
        for item in v:
            if isinstance(item, dict):
                item = item.get('alias')
            if item and str(item).strip():
                out.append(str(item).strip())
        return out


class ParsedIngredient(BaseModel):
    """One resolved (or unresolved) token from an ingredient list."""
    raw_name: str
    normalized_name: str = ''
    matched: bool = False
    match_type: Optional[MatchType] = None
    matched_canonical_name: Optional[str] = None
    ingredient_id: Optional[int] = None
    verdict: Optional[Verdict] = None
    fuzzy_distance: Optional[int] = Field(default=None, ge=0)


class ResolveResult(BaseModel):
    """
    Output of the ingredient resolver.
    linked_ids is duplicate-free and keeps first-seen order.
    """
    linked_ids: list[int] = []
    unmatched: list[str] = []
    auto_verdict: Optional[Verdict] = None
    parsed: list[ParsedIngredient] = []

    @property
    def fuzzy_matches(self) -> list[ParsedIngredient]:
        return [p for p in self.parsed if p.match_type == MatchType.FUZZY]


class VerdictRule(BaseModel):
    """An admin-authored rule. Only applied_count is ever written by the engine."""
    id: int
    name: str
    condition_type: ConditionType
    ingredient_condition: list[int] = []
    ingredient_verdict_condition: Optional[IngredientVerdictCondition] = None
    category_condition: list[int] = []
    action: RuleAction
    warning_message: Optional[str] = None
    is_active: bool = True
    priority: int = 0
    applied_count: int = Field(default=0, ge=0)

    @field_validator('ingredient_condition', 'category_condition', mode='before')
    @classmethod
    def none_to_empty(cls, v):
        return [] if v is None else v

    @field_validator('ingredient_verdict_condition', mode='before')
    @classmethod
    def legacy_flagged(cls, v):
        # 'flagged' is the legacy spelling of 'avoid'
        return 'avoid' if v == 'flagged' else v

    @field_validator('action', mode='before')
    @classmethod
    def legacy_set_flagged(cls, v):
        return 'set_avoid' if v == 'set_flagged' else v


class HarmfulIngredient(BaseModel):
    ingredient: str = Field(min_length=1)
    reason: Optional[str] = None


class Category(BaseModel):
    """A node in the category tree. parent is a weak reference by id."""
    id: int
    name: str
    slug: str
    parent: Optional[int] = None
    ai_suggested: bool = False
    ai_source: Optional[str] = None
    harmful_ingredients: list[HarmfulIngredient] = []

    @field_validator('harmful_ingredients', mode='before')
    @classmethod
    def none_to_empty(cls, v):
        return [] if v is None else v


class ThresholdConfig(BaseModel):
    """Automation thresholds, read once per resolution call."""
    enable_fuzzy_matching: bool = True
    fuzzy_match_threshold: int = Field(default=2, ge=0, le=10)
    freshness_threshold_days: int = Field(default=DEFAULT_FRESHNESS_THRESHOLD_DAYS, ge=1)


class ProductSubmission(BaseModel):
    """What the record-save hook hands to the pipeline for one product."""
    name: Optional[str] = None
    ingredients_text: Optional[str] = None
    category_path: Optional[str] = None
    category_id: Optional[int] = None
    proposed_verdict: Optional[Verdict] = None
    verdict_override: bool = False
    source_id: Optional[str] = None
    ai_suggested: bool = True

    @field_validator('proposed_verdict')
    @classmethod
    def product_verdicts_only(cls, v):
        if v in (Verdict.SAFE, Verdict.UNKNOWN):
            raise ValueError(f"proposed_verdict must be recommend/caution/avoid, got '{v.value}'")
        return v


class AuditEvent(BaseModel):
    """One row of the audit trail."""
    action: str
    source_type: str = 'system'
    source_id: Optional[str] = None
    target_collection: Optional[str] = None
    target_id: Optional[int] = None
    target_name: Optional[str] = None
    metadata: dict[str, Any] = {}
    success: bool = True
    error_message: Optional[str] = None
