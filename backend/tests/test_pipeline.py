"""
End-to-end tests for the save-time verdict pipeline against a sqlite database
"""
import json

import pytest
from pydantic import ValidationError

from intake.config import ThresholdProvider, save_thresholds
from intake.errors import InfrastructureError
from intake.models import ProductSubmission, ThresholdConfig
from intake.pipeline import VerdictPipeline, create_missing_ingredients
from intake.store import SqliteCatalogStore, SqliteCategoryStore, SqliteRuleStore
from verdict.constants import Verdict


@pytest.fixture
def pipeline(catalog_store, rule_store, category_store, audit_sink, db_path):
    return VerdictPipeline(
        catalog_store, rule_store, category_store,
        audit_sink=audit_sink,
        threshold_provider=ThresholdProvider(db_path),
    )


def test_auto_verdict_used_when_nothing_proposed(pipeline):
    decision = pipeline.decide(ProductSubmission(ingredients_text='Sugar, Aspartame'))
    assert decision.verdict == Verdict.CAUTION
    assert decision.can_save is True
    assert decision.can_publish is True


def test_recommend_over_avoid_ingredient_is_vetoed(pipeline, audit_sink):
    decision = pipeline.decide(ProductSubmission(
        name='Rainbow Candy',
        ingredients_text='Sugar, Red Dye 40 (FD&C), Salt 2%',
        proposed_verdict='recommend',
    ))

    assert decision.verdict == Verdict.RECOMMEND
    assert decision.auto_verdict == Verdict.AVOID
    assert decision.can_save is False
    assert decision.can_publish is False
    assert 'Cannot RECOMMEND product with AVOID ingredients: red dye 40' in decision.warnings
    assert [r['action'] for r in audit_sink.fetch()] == ['conflict_detected']


def test_override_allows_save(pipeline, audit_sink):
    decision = pipeline.decide(ProductSubmission(
        ingredients_text='Red Dye 40',
        proposed_verdict='recommend',
        verdict_override=True,
    ))
    assert decision.can_save is True
    assert len(audit_sink.fetch('manual_override')) == 1


def test_rule_suggestion_beats_auto_verdict(pipeline, rule_store, catalog):
    rule_store.create({
        'name': 'Aspartame is avoid',
        'condition_type': 'contains_ingredient',
        'ingredient_condition': [catalog['aspartame'].id],
        'action': 'set_avoid',
        'priority': 5,
    })
    decision = pipeline.decide(ProductSubmission(ingredients_text='Sugar, Aspartame'))

    assert decision.auto_verdict == Verdict.CAUTION
    assert decision.suggested_verdict == Verdict.AVOID
    assert decision.verdict == Verdict.AVOID


def test_rule_suggested_recommend_still_checked_for_conflicts(pipeline, rule_store, category_store):
    """A rule cannot talk the engine into recommending an avoid ingredient"""
    pipeline.decide(ProductSubmission(ingredients_text='Salt', category_path='Snacks'))
    snacks = category_store.find({'name': 'Snacks'})[0]
    rule_store.create({
        'name': 'Snacks are fine',
        'condition_type': 'category_match',
        'category_condition': [snacks.id],
        'action': 'set_recommend',
    })
    decision = pipeline.decide(ProductSubmission(ingredients_text='HFCS', category_id=snacks.id))

    assert decision.verdict == Verdict.RECOMMEND
    assert decision.can_save is False


def test_block_publish_keeps_save(pipeline, rule_store, catalog):
    rule_store.create({
        'name': 'Dye needs review',
        'condition_type': 'contains_ingredient',
        'ingredient_condition': [catalog['red dye 40'].id],
        'action': 'block_publish',
        'warning_message': 'Dyes require editorial review',
    })
    decision = pipeline.decide(ProductSubmission(ingredients_text='Red Dye 40', proposed_verdict='avoid'))

    assert decision.can_save is True
    assert decision.can_publish is False
    assert decision.warnings == ['Dyes require editorial review']


def test_category_path_is_hydrated(pipeline, category_store):
    decision = pipeline.decide(ProductSubmission(
        ingredients_text='Sugar',
        category_path='Food & Beverage > Protein Bars',
    ))
    category = category_store.find_by_id(decision.category_id)
    assert category.name == 'Protein Bars'


def test_fuzzy_matching_follows_site_settings(pipeline, db_path):
    save_thresholds(db_path, ThresholdConfig(enable_fuzzy_matching=False))
    decision = pipeline.decide(ProductSubmission(ingredients_text='Aspartme'))
    assert decision.unmatched == ['Aspartme']
    assert decision.verdict is None


def test_create_missing_ingredients(catalog_store, rule_store, category_store):
    pipeline = VerdictPipeline(catalog_store, rule_store, category_store, create_missing=True)
    decision = pipeline.decide(ProductSubmission(ingredients_text='Sugar, Moringa Powder'))

    created = catalog_store.find({'canonical_name': 'Moringa Powder'})
    assert len(created) == 1
    assert created[0].verdict == Verdict.UNKNOWN
    assert decision.created_ids == [created[0].id]
    assert created[0].id in decision.linked_ids


def test_create_missing_skips_duplicates(catalog_store):
    created = create_missing_ingredients(['Sugar', 'Quinoa', 'quinoa'], catalog_store)
    assert len(created) == 1


def test_store_failure_propagates(tmp_path, rule_store, category_store):
    broken = SqliteCatalogStore(str(tmp_path / 'no_tables.db'))
    pipeline = VerdictPipeline(broken, rule_store, category_store)
    with pytest.raises(InfrastructureError):
        pipeline.decide(ProductSubmission(ingredients_text='Sugar'))


def test_product_verdict_vocabulary():
    with pytest.raises(ValidationError):
        ProductSubmission(ingredients_text='Sugar', proposed_verdict='safe')


def test_decision_serializes_to_json(pipeline):
    decision = pipeline.decide(ProductSubmission(
        ingredients_text='Sugar, Red Dye 40', proposed_verdict='recommend'
    ))
    data = json.loads(json.dumps(decision.to_dict()))

    assert data['verdict'] == 'recommend'
    assert data['conflicts'][0]['severity'] == 'error'
    assert [p['normalized_name'] for p in data['parsed']] == ['sugar', 'red dye 40']
    assert data['verdict_label'] == 'Recommend'
    assert data['action_required'] == 'Publishing permitted'
