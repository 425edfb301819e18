"""
═══════════════════════════════════════════════════════════════════════════════
VERDICT ENGINE: RULE EVALUATOR
Applies admin-authored verdict rules to one product

Rules run in descending priority. Every active rule is evaluated and
reported; matched rules apply their action:

  set_avoid      → suggested verdict becomes avoid (never downgraded after)
  set_caution    → caution, unless avoid is already set
  set_recommend  → recommend, only if nothing is set yet
  block_publish  → publishing blocked, warning message appended
  warn_only      → warning message appended
═══════════════════════════════════════════════════════════════════════════════
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Set

from intake.models import VerdictRule
from intake.store import record_audit_event
from .constants import (
    Verdict, ConditionType, IngredientVerdictCondition, RuleAction,
    SAFE_VERDICTS, coerce_verdict,
)

logger = logging.getLogger(__name__)


@dataclass
class RuleEvaluation:
    """Outcome of one rule against one product"""
    rule_id: int
    rule_name: str
    matched: bool
    action: RuleAction
    message: Optional[str] = None


@dataclass
class RuleEvaluationResult:
    """All rule outcomes for a product"""
    evaluations: List[RuleEvaluation] = field(default_factory=list)
    suggested_verdict: Optional[Verdict] = None
    should_block: bool = False
    warnings: List[str] = field(default_factory=list)


@dataclass
class _ProductFacts:
    ingredient_ids: Set[int]
    category_id: Optional[int]
    ingredient_verdicts: List[Verdict]


# ═══════════════════════════════════════════════════════
#  Condition handlers
# ═══════════════════════════════════════════════════════

def _contains_ingredient(rule: VerdictRule, facts: _ProductFacts) -> bool:
    if not rule.ingredient_condition or not facts.ingredient_ids:
        return False
    return any(i in facts.ingredient_ids for i in rule.ingredient_condition)


def _missing_ingredient(rule: VerdictRule, facts: _ProductFacts) -> bool:
    if not rule.ingredient_condition:
        return False
    return not any(i in facts.ingredient_ids for i in rule.ingredient_condition)


def _ingredient_verdict(rule: VerdictRule, facts: _ProductFacts) -> bool:
    if rule.ingredient_verdict_condition is None or not facts.ingredient_verdicts:
        return False
    return VERDICT_CONDITION_HANDLERS[rule.ingredient_verdict_condition](facts.ingredient_verdicts)


def _category_match(rule: VerdictRule, facts: _ProductFacts) -> bool:
    if not rule.category_condition or facts.category_id is None:
        return False
    return facts.category_id in rule.category_condition


CONDITION_HANDLERS: Dict[ConditionType, Callable[[VerdictRule, _ProductFacts], bool]] = {
    ConditionType.CONTAINS_INGREDIENT: _contains_ingredient,
    ConditionType.MISSING_INGREDIENT: _missing_ingredient,
    ConditionType.INGREDIENT_VERDICT: _ingredient_verdict,
    ConditionType.CATEGORY_MATCH: _category_match,
}

VERDICT_CONDITION_HANDLERS: Dict[IngredientVerdictCondition, Callable[[List[Verdict]], bool]] = {
    IngredientVerdictCondition.AVOID: lambda verdicts: Verdict.AVOID in verdicts,
    IngredientVerdictCondition.CAUTION: lambda verdicts: Verdict.CAUTION in verdicts,
    IngredientVerdictCondition.SAFE_ONLY: lambda verdicts: all(v in SAFE_VERDICTS for v in verdicts),
}


# ═══════════════════════════════════════════════════════
#  Action handlers
# ═══════════════════════════════════════════════════════

def _set_avoid(rule: VerdictRule, result: RuleEvaluationResult):
    result.suggested_verdict = Verdict.AVOID


def _set_caution(rule: VerdictRule, result: RuleEvaluationResult):
    if result.suggested_verdict != Verdict.AVOID:
        result.suggested_verdict = Verdict.CAUTION


def _set_recommend(rule: VerdictRule, result: RuleEvaluationResult):
    if result.suggested_verdict is None:
        result.suggested_verdict = Verdict.RECOMMEND


def _block_publish(rule: VerdictRule, result: RuleEvaluationResult):
    result.should_block = True
    if rule.warning_message:
        result.warnings.append(rule.warning_message)


def _warn_only(rule: VerdictRule, result: RuleEvaluationResult):
    if rule.warning_message:
        result.warnings.append(rule.warning_message)


ACTION_HANDLERS: Dict[RuleAction, Callable[[VerdictRule, RuleEvaluationResult], None]] = {
    RuleAction.SET_AVOID: _set_avoid,
    RuleAction.SET_CAUTION: _set_caution,
    RuleAction.SET_RECOMMEND: _set_recommend,
    RuleAction.BLOCK_PUBLISH: _block_publish,
    RuleAction.WARN_ONLY: _warn_only,
}


class VerdictRuleEngine:
    """
    Evaluates verdict rules for a product.

    rule_store (optional) receives applied_count increments; audit_sink
    (optional) receives one 'rule_applied' event per matched rule. Neither
    can fail an evaluation.
    """

    def __init__(self, rule_store=None, audit_sink=None):
        self.rule_store = rule_store
        self.audit_sink = audit_sink

    def evaluate(
        self,
        ingredient_ids: Iterable[int],
        category_id: Optional[int],
        proposed_verdict: Optional[Verdict],
        rules: Iterable[VerdictRule],
        ingredient_verdicts: Optional[Dict[int, Verdict]] = None,
    ) -> RuleEvaluationResult:
        """
        Evaluate rules against a product's facts.

        proposed_verdict is accepted for logging only; it never changes
        which rules match.
        """
        result = RuleEvaluationResult()

        # Stable: equal priorities keep the order the store returned
        active = sorted((r for r in rules if r.is_active), key=lambda r: -r.priority)
        if not active:
            return result

        ids = set(ingredient_ids or [])
        verdicts = []
        for ingredient_id, verdict in (ingredient_verdicts or {}).items():
            if ingredient_id not in ids:
                continue
            verdict = coerce_verdict(verdict)
            if verdict is not None:
                verdicts.append(verdict)

        facts = _ProductFacts(ingredient_ids=ids, category_id=category_id, ingredient_verdicts=verdicts)

        for rule in active:
            matched = CONDITION_HANDLERS[rule.condition_type](rule, facts)
            result.evaluations.append(RuleEvaluation(
                rule_id=rule.id,
                rule_name=rule.name,
                matched=matched,
                action=rule.action,
                message=rule.warning_message if matched else None,
            ))
            if not matched:
                continue

            ACTION_HANDLERS[rule.action](rule, result)
            self._increment_applied_count(rule)
            record_audit_event(self.audit_sink, {
                'action': 'rule_applied',
                'target_collection': 'verdict_rules',
                'target_id': rule.id,
                'target_name': rule.name,
                'metadata': {
                    'rule_action': rule.action.value,
                    'category_id': category_id,
                    'proposed_verdict': proposed_verdict.value if proposed_verdict else None,
                },
            })

        matched_count = sum(1 for e in result.evaluations if e.matched)
        logger.info(
            f"Rules evaluated: {len(result.evaluations)}, matched={matched_count}, "
            f"suggested={result.suggested_verdict.value if result.suggested_verdict else None}, "
            f"block={result.should_block}"
        )
        return result

    def _increment_applied_count(self, rule: VerdictRule):
        if self.rule_store is None:
            return
        try:
            self.rule_store.update(rule.id, {'applied_count': rule.applied_count + 1})
        except Exception as e:
            logger.warning(f"⚠️ Could not update applied_count for rule {rule.id}: {e}")
