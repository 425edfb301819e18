"""
Tests for edit distance and the ingredient resolver
"""
import pytest

from conftest import BrokenSink, RecordingSink, entry
from intake.errors import InfrastructureError
from intake.match import CatalogIndex, IngredientResolver, edit_distance, within_length_window
from intake.models import ThresholdConfig
from intake.store import SqliteCatalogStore
from verdict.constants import MatchType, Verdict


NO_FUZZY = ThresholdConfig(enable_fuzzy_matching=False)


# ═══════════════════════════════════════════════════════
#  Edit distance
# ═══════════════════════════════════════════════════════

@pytest.mark.parametrize('a, b, expected', [
    ('kitten', 'sitting', 3),
    ('', 'abc', 3),
    ('sugar', 'sugar', 0),
    ('ab', 'ba', 2),  # no transpositions
])
def test_edit_distance(a, b, expected):
    assert edit_distance(a, b) == expected


def test_edit_distance_cutoff_caps_result():
    assert edit_distance('aspartame', 'xxxxxxxxx', score_cutoff=2) == 3


def test_length_window():
    assert within_length_window('salt', 'salts', 0)
    assert within_length_window('salt', 'saltpeter', 3)
    assert not within_length_window('salt', 'saltpeter', 2)


# ═══════════════════════════════════════════════════════
#  Resolver
# ═══════════════════════════════════════════════════════

def test_red_dye_scenario(catalog):
    """'Red Dye 40 (FD&C)' links to the avoid entry and drives the verdict"""
    result = IngredientResolver().resolve('Sugar, Red Dye 40 (FD&C), Salt 2%', catalog.values())

    assert result.linked_ids == [catalog['sugar'].id, catalog['red dye 40'].id, catalog['salt'].id]
    assert result.unmatched == []
    assert result.auto_verdict == Verdict.AVOID
    assert result.parsed[1].match_type == MatchType.EXACT


def test_empty_text_yields_empty_result(catalog):
    result = IngredientResolver().resolve('', catalog.values())
    assert result.linked_ids == []
    assert result.unmatched == []
    assert result.auto_verdict is None


def test_alias_match(catalog):
    result = IngredientResolver().resolve('HFCS', catalog.values())
    assert result.linked_ids == [catalog['high fructose corn syrup'].id]
    assert result.parsed[0].match_type == MatchType.ALIAS


def test_fuzzy_match_reported_to_audit(catalog):
    sink = RecordingSink()
    result = IngredientResolver(audit_sink=sink).resolve('Aspartme', catalog.values(), ThresholdConfig())

    assert result.linked_ids == [catalog['aspartame'].id]
    assert result.auto_verdict == Verdict.CAUTION
    assert result.fuzzy_matches[0].fuzzy_distance == 1
    assert sink.actions() == ['ai_ingredient_parsed']
    assert sink.events[0]['metadata']['match_type'] == 'fuzzy'


def test_fuzzy_disabled_scenario(catalog):
    """With fuzzy matching off a typo stays unmatched and nothing is audited"""
    sink = RecordingSink()
    result = IngredientResolver(audit_sink=sink).resolve('Sugar, Aspartme', catalog.values(), NO_FUZZY)

    assert result.linked_ids == [catalog['sugar'].id]
    assert result.unmatched == ['Aspartme']
    assert result.auto_verdict == Verdict.RECOMMEND
    assert sink.events == []


def test_short_tokens_never_fuzzy(catalog):
    result = IngredientResolver().resolve('Slt', catalog.values(), ThresholdConfig())
    assert result.unmatched == ['Slt']


def test_fuzzy_respects_threshold(catalog):
    strict = ThresholdConfig(fuzzy_match_threshold=0)
    result = IngredientResolver().resolve('Aspartme', catalog.values(), strict)
    assert result.unmatched == ['Aspartme']


def test_audit_failure_does_not_fail_resolution(catalog):
    result = IngredientResolver(audit_sink=BrokenSink()).resolve('Aspartme', catalog.values())
    assert result.linked_ids == [catalog['aspartame'].id]


def test_linked_ids_deduplicated(catalog):
    result = IngredientResolver().resolve('Salt, salt, Sea Salt', catalog.values())
    assert result.linked_ids == [catalog['salt'].id]
    assert all(p.matched for p in result.parsed)


def test_monotonic_severity(catalog):
    """Adding ingredients never lowers the auto verdict"""
    resolver = IngredientResolver()
    texts = ['Sugar', 'Sugar, Aspartame', 'Sugar, Aspartame, HFCS', 'Sugar, Aspartame, HFCS, Salt']
    order = {Verdict.RECOMMEND: 1, Verdict.CAUTION: 2, Verdict.AVOID: 3}
    severities = [order[resolver.resolve(t, catalog.values()).auto_verdict] for t in texts]
    assert severities == sorted(severities)
    assert severities[-1] == 3


def test_unknown_ingredients_do_not_raise_verdict():
    catalog = [entry(1, 'mystery gum', verdict='unknown')]
    result = IngredientResolver().resolve('Mystery Gum', catalog)
    assert result.auto_verdict == Verdict.RECOMMEND


@pytest.mark.parametrize('names', [
    ['milk', 'milk chocolate'],
    ['milk chocolate', 'milk'],
])
def test_partial_match_longest_key_wins(names):
    """Partial matching does not depend on catalog order"""
    catalog = [entry(i + 1, name) for i, name in enumerate(names)]
    result = IngredientResolver().resolve('Dark Milk Chocolate Bar', catalog, NO_FUZZY)
    matched = result.parsed[0].matched_canonical_name
    assert matched == 'milk chocolate'


def test_fuzzy_tie_goes_to_first_encountered():
    catalog = [entry(1, 'bacon'), entry(2, 'baton')]
    result = IngredientResolver().resolve('Bason', catalog)
    assert result.linked_ids == [1]


def test_duplicate_names_last_write_wins():
    index = CatalogIndex([entry(1, 'salt'), entry(2, 'Salt', verdict='avoid')])
    assert index.lookup_exact('salt').id == 2


def test_catalog_fetch_failure_propagates(tmp_path):
    """A missing catalog table is an infrastructure failure, not 'no match'"""
    store = SqliteCatalogStore(str(tmp_path / 'empty.db'))
    with pytest.raises(InfrastructureError):
        IngredientResolver().resolve('Sugar', store.find())


NUMBERED_CATALOG = [
    entry(1, 'red dye 3', 'caution'),
    entry(2, 'red dye 40', 'avoid'),
    entry(3, 'vitamin b6', 'recommend'),
    entry(4, 'vitamin b12', 'avoid'),
]


def test_numbered_names_stay_distinct():
    """'Red Dye 3' and 'Vitamin B6' never collapse onto their numbered neighbours"""
    result = IngredientResolver().resolve('Red Dye 3, Vitamin B6', NUMBERED_CATALOG, NO_FUZZY)

    assert result.linked_ids == [1, 3]
    assert result.auto_verdict == Verdict.CAUTION
    assert [p.match_type for p in result.parsed] == [MatchType.EXACT, MatchType.EXACT]


@pytest.mark.parametrize('text, expected_id', [
    ('Red Dye 40', 2),
    ('Red Dye 40 (FD&C)', 2),
    ('Vitamin B12', 4),
    ('vitamin b6', 3),
])
def test_numbered_names_resolve_exactly(text, expected_id):
    result = IngredientResolver().resolve(text, NUMBERED_CATALOG, NO_FUZZY)
    assert result.linked_ids == [expected_id]


def test_water_dye_and_organic_sugar():
    """Unknown 'Water' is reported while the dye still drives the verdict"""
    catalog = [entry(1, 'red dye 40', 'avoid'), entry(2, 'sugar', 'recommend')]
    result = IngredientResolver().resolve('Water, Red Dye 40 (FD&C), Organic Sugar', catalog)

    assert result.linked_ids == [1, 2]
    assert result.auto_verdict == Verdict.AVOID
    assert result.unmatched == ['Water']
