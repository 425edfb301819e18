"""
pipeline.py — Save-time verdict orchestrator.
Runs: Category hydration → Ingredient resolution → Rule evaluation →
      Verdict choice → Conflict detection, once per product save.

Catalog, rules, thresholds and the category are fetched once per call.
Infrastructure failures propagate; a veto comes back as can_save=False.
"""

import logging
from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from typing import Iterable, List, Optional

from intake.match import CatalogIndex, IngredientResolver
from intake.models import ProductSubmission, ResolveResult, ThresholdConfig
from verdict.categories import CategoryHydrator
from verdict.conflicts import Conflict, ConflictDetector
from verdict.constants import Verdict, VERDICT_MAP, MAX_ACTIVE_RULES
from verdict.rule_engine import RuleEvaluation, VerdictRuleEngine

logger = logging.getLogger(__name__)

AUTO_CREATED_REASON = 'Auto-created from product ingredients - needs research'


@dataclass
class VerdictDecision:
    """Everything the save hook needs to accept, veto or flag a product"""
    verdict: Optional[Verdict]
    auto_verdict: Optional[Verdict]
    suggested_verdict: Optional[Verdict]
    can_save: bool
    can_publish: bool
    warnings: List[str] = field(default_factory=list)
    conflicts: List[Conflict] = field(default_factory=list)
    linked_ids: List[int] = field(default_factory=list)
    unmatched: List[str] = field(default_factory=list)
    created_ids: List[int] = field(default_factory=list)
    category_id: Optional[int] = None
    evaluations: List[RuleEvaluation] = field(default_factory=list)
    resolution: Optional[ResolveResult] = None

    def to_dict(self) -> dict:
        data = {f.name: getattr(self, f.name) for f in fields(self) if f.name != 'resolution'}
        data['conflicts'] = [asdict(c) for c in self.conflicts]
        data['evaluations'] = [asdict(e) for e in self.evaluations]
        data = _plain(data)
        data['parsed'] = [p.model_dump(mode='json') for p in self.resolution.parsed] if self.resolution else []
        info = VERDICT_MAP.get(self.verdict) if self.verdict else None
        data['verdict_label'] = info.label if info else None
        data['action_required'] = info.action_required if info else None
        return data


def _plain(value):
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_plain(v) for v in value]
    return value


def create_missing_ingredients(unmatched: Iterable[str], catalog_store, source_id: Optional[str] = None) -> List[int]:
    """
    Create 'unknown' catalog entries for names the resolver could not link.
    Failures (usually duplicates) are logged and skipped.
    """
    created_ids = []
    for name in unmatched:
        name = (name or '').strip()
        if not name:
            continue
        try:
            entry = catalog_store.create({
                'canonical_name': name,
                'verdict': Verdict.UNKNOWN.value,
                'reason': AUTO_CREATED_REASON,
                'created_via': 'auto',
                'source_id': source_id,
            })
            created_ids.append(entry.id)
        except Exception as e:
            logger.warning(f"⚠️ Could not create ingredient '{name}': {e}")
    if created_ids:
        logger.info(f"Auto-created {len(created_ids)} ingredient(s) with unknown verdict")
    return created_ids


class VerdictPipeline:

    def __init__(self, catalog_store, rule_store, category_store, audit_sink=None,
                 threshold_provider=None, create_missing: bool = False):
        self.catalog_store = catalog_store
        self.rule_store = rule_store
        self.category_store = category_store
        self.audit_sink = audit_sink
        self.threshold_provider = threshold_provider
        self.create_missing = create_missing

        self.resolver = IngredientResolver(audit_sink=audit_sink)
        self.rule_engine = VerdictRuleEngine(rule_store=rule_store, audit_sink=audit_sink)
        self.hydrator = CategoryHydrator(category_store, audit_sink=audit_sink)
        self.detector = ConflictDetector(catalog_store, category_store, audit_sink=audit_sink)

    def _thresholds(self) -> ThresholdConfig:
        if self.threshold_provider is None:
            return ThresholdConfig()
        return self.threshold_provider.get_thresholds()

    def decide(self, submission: ProductSubmission) -> VerdictDecision:
        # ── Step 1: Category ──
        category_id = submission.category_id
        if submission.category_path:
            hydrated = self.hydrator.hydrate(
                submission.category_path,
                ai_suggested=submission.ai_suggested,
                source_id=submission.source_id,
            )
            category_id = hydrated.category_id

        # ── Step 2: Fetch once ──
        thresholds = self._thresholds()
        index = CatalogIndex(self.catalog_store.find())
        rules = self.rule_store.find_active(limit=MAX_ACTIVE_RULES)

        # ── Step 3: Resolve ingredients ──
        resolution = self.resolver.resolve(
            submission.ingredients_text, index, thresholds, product_name=submission.name
        )
        linked_ids = list(resolution.linked_ids)
        created_ids = []
        if self.create_missing and resolution.unmatched:
            created_ids = create_missing_ingredients(
                resolution.unmatched, self.catalog_store, source_id=submission.source_id
            )
            linked_ids.extend(i for i in created_ids if i not in linked_ids)

        linked_entries = index.entries_for(linked_ids)
        ingredient_verdicts = {e.id: e.verdict for e in linked_entries}
        ingredient_verdicts.update({i: Verdict.UNKNOWN for i in created_ids})

        # ── Step 4: Rules ──
        evaluation = self.rule_engine.evaluate(
            linked_ids, category_id, submission.proposed_verdict, rules, ingredient_verdicts
        )

        # ── Step 5: Choose verdict (editor > rules > ingredients) ──
        verdict = submission.proposed_verdict or evaluation.suggested_verdict or resolution.auto_verdict

        # ── Step 6: Conflicts ──
        conflicts = self.detector.detect(
            verdict,
            linked_ids,
            verdict_override=submission.verdict_override,
            category_id=category_id,
            ingredients=linked_entries,
        )

        warnings = list(evaluation.warnings) + [c.message for c in conflicts.conflicts]
        can_publish = conflicts.can_save and not evaluation.should_block

        decision = VerdictDecision(
            verdict=verdict,
            auto_verdict=resolution.auto_verdict,
            suggested_verdict=evaluation.suggested_verdict,
            can_save=conflicts.can_save,
            can_publish=can_publish,
            warnings=warnings,
            conflicts=conflicts.conflicts,
            linked_ids=linked_ids,
            unmatched=list(resolution.unmatched),
            created_ids=created_ids,
            category_id=category_id,
            evaluations=evaluation.evaluations,
            resolution=resolution,
        )

        logger.info(
            f"Decision for '{submission.name or '-'}': verdict={verdict.value if verdict else None}, "
            f"can_save={decision.can_save}, can_publish={decision.can_publish}, "
            f"warnings={len(warnings)}"
        )
        return decision
