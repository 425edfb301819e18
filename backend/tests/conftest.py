"""
Shared fixtures: a fresh engine database per test, seeded with a small
ingredient catalog.
"""
import pytest

from intake.store import (
    SqliteAuditSink, SqliteCatalogStore, SqliteCategoryStore, SqliteRuleStore, init_engine_tables,
)
from intake.models import IngredientCatalogEntry


SEED_INGREDIENTS = [
    {'canonical_name': 'sugar', 'verdict': 'safe'},
    {'canonical_name': 'salt', 'verdict': 'safe'},
    {'canonical_name': 'red dye 40', 'verdict': 'avoid', 'aliases': ['allura red', 'e129']},
    {'canonical_name': 'aspartame', 'verdict': 'caution'},
    {'canonical_name': 'high fructose corn syrup', 'verdict': 'avoid', 'aliases': ['hfcs']},
    {'canonical_name': 'vitamin c', 'verdict': 'recommend'},
]


@pytest.fixture
def db_path(tmp_path):
    path = str(tmp_path / 'engine.db')
    init_engine_tables(path)
    return path


@pytest.fixture
def catalog_store(db_path):
    store = SqliteCatalogStore(db_path)
    for data in SEED_INGREDIENTS:
        store.create(data)
    return store


@pytest.fixture
def rule_store(db_path):
    return SqliteRuleStore(db_path)


@pytest.fixture
def category_store(db_path):
    return SqliteCategoryStore(db_path)


@pytest.fixture
def audit_sink(db_path):
    return SqliteAuditSink(db_path)


@pytest.fixture
def catalog(catalog_store):
    """Seeded catalog entries, keyed by canonical name"""
    return {e.canonical_name: e for e in catalog_store.find()}


def entry(id, name, verdict='safe', aliases=None):
    return IngredientCatalogEntry(id=id, canonical_name=name, verdict=verdict, aliases=aliases or [])


class RecordingSink:
    """In-memory audit sink"""

    def __init__(self):
        self.events = []

    def record(self, event):
        self.events.append(event)
        return len(self.events)

    def actions(self):
        return [e['action'] for e in self.events]


class BrokenSink:
    def record(self, event):
        raise RuntimeError('audit store offline')


@pytest.fixture
def recording_sink():
    return RecordingSink()
