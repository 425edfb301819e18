"""
═══════════════════════════════════════════════════════════════════════════════
VERDICT ENGINE: CONFLICT DETECTOR
Cross-checks a proposed product verdict against its ingredients

⛔️ A RECOMMEND verdict over an AVOID ingredient vetoes the save unless the
editor explicitly sets verdict_override. The veto is a result, not an
exception: callers read ConflictResult.can_save.
═══════════════════════════════════════════════════════════════════════════════
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from intake.errors import InfrastructureError
from intake.models import Category, IngredientCatalogEntry
from intake.store import record_audit_event
from .constants import Verdict, ConflictType, Severity, coerce_verdict

logger = logging.getLogger(__name__)


@dataclass
class Conflict:
    type: ConflictType
    severity: Severity
    message: str
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ConflictResult:
    """Conflicts for one save; can_save is False only for an un-overridden veto"""
    conflicts: List[Conflict] = field(default_factory=list)
    can_save: bool = True

    @property
    def has_conflicts(self) -> bool:
        return bool(self.conflicts)

    @property
    def errors(self) -> List[Conflict]:
        return [c for c in self.conflicts if c.severity == Severity.ERROR]


class ConflictDetector:
    """
    catalog_store supplies ingredient names/verdicts (find_by_ids) unless the
    caller passes the already-fetched entries; category_store supplies
    harmful-ingredient lists (find_by_id).
    """

    def __init__(self, catalog_store=None, category_store=None, audit_sink=None):
        self.catalog_store = catalog_store
        self.category_store = category_store
        self.audit_sink = audit_sink

    def detect(
        self,
        proposed_verdict: Optional[Verdict],
        ingredient_ids: Iterable[int],
        verdict_override: bool = False,
        category_id: Optional[int] = None,
        ingredients: Optional[List[IngredientCatalogEntry]] = None,
        category: Optional[Category] = None,
    ) -> ConflictResult:
        result = ConflictResult()

        ingredient_ids = list(dict.fromkeys(ingredient_ids or []))
        if not ingredient_ids:
            return result

        if ingredients is None:
            if self.catalog_store is None:
                raise InfrastructureError(
                    "ConflictDetector needs a catalog_store or pre-fetched ingredients", store='ingredients'
                )
            ingredients = self.catalog_store.find_by_ids(ingredient_ids)
        else:
            wanted = set(ingredient_ids)
            ingredients = [e for e in ingredients if e.id in wanted]

        proposed_verdict = coerce_verdict(proposed_verdict)

        if proposed_verdict == Verdict.RECOMMEND:
            self._check_verdict_mismatch(ingredients, verdict_override, result)

        if category_id is not None:
            if category is None and self.category_store is not None:
                category = self.category_store.find_by_id(category_id)
            if category is not None:
                self._check_category(category, ingredients, result)

        self._audit(result, proposed_verdict, ingredient_ids, verdict_override, category_id)
        return result

    # ── Checks ──

    @staticmethod
    def _check_verdict_mismatch(ingredients, verdict_override: bool, result: ConflictResult):
        avoid_names = [e.canonical_name for e in ingredients if e.verdict == Verdict.AVOID]
        caution_names = [e.canonical_name for e in ingredients if e.verdict == Verdict.CAUTION]

        if avoid_names:
            result.conflicts.append(Conflict(
                type=ConflictType.INGREDIENT_VERDICT_MISMATCH,
                severity=Severity.ERROR,
                message=f"Cannot RECOMMEND product with AVOID ingredients: {', '.join(avoid_names)}",
                details={'avoid_ingredients': avoid_names},
            ))
            if not verdict_override:
                result.can_save = False
                logger.warning(f"⛔️ Save vetoed: RECOMMEND with AVOID ingredients {avoid_names}")

        if caution_names:
            result.conflicts.append(Conflict(
                type=ConflictType.INGREDIENT_VERDICT_MISMATCH,
                severity=Severity.WARNING,
                message=f"Product contains CAUTION ingredients: {', '.join(caution_names)}",
                details={'caution_ingredients': caution_names},
            ))

    @staticmethod
    def _check_category(category: Category, ingredients, result: ConflictResult):
        for harmful in category.harmful_ingredients:
            needle = harmful.ingredient.lower()
            for entry in ingredients:
                if needle in entry.canonical_name.lower():
                    result.conflicts.append(Conflict(
                        type=ConflictType.CATEGORY_WARNING,
                        severity=Severity.WARNING,
                        message=f'Contains "{harmful.ingredient}" - '
                                f'{harmful.reason or "flagged as harmful for this category"}',
                        details={
                            'ingredient': harmful.ingredient,
                            'reason': harmful.reason,
                            'matched_ingredient': entry.canonical_name,
                            'category_id': category.id,
                        },
                    ))

    # ── Audit ──

    def _audit(self, result: ConflictResult, proposed_verdict, ingredient_ids, verdict_override, category_id):
        if not result.conflicts:
            return

        record_audit_event(self.audit_sink, {
            'action': 'conflict_detected',
            'target_collection': 'products',
            'metadata': {
                'proposed_verdict': proposed_verdict.value if proposed_verdict else None,
                'ingredient_ids': ingredient_ids,
                'category_id': category_id,
                'can_save': result.can_save,
                'conflicts': [
                    {'type': c.type.value, 'severity': c.severity.value, 'message': c.message}
                    for c in result.conflicts
                ],
            },
        })

        if verdict_override and result.errors:
            logger.warning(f"⚠️ Verdict override bypassed {len(result.errors)} blocking conflict(s)")
            record_audit_event(self.audit_sink, {
                'action': 'manual_override',
                'source_type': 'user',
                'target_collection': 'products',
                'metadata': {
                    'proposed_verdict': proposed_verdict.value if proposed_verdict else None,
                    'bypassed': [c.message for c in result.errors],
                },
            })
