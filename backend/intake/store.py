"""
store.py — sqlite-backed stores for the verdict engine.

One database file holds the ingredient catalog, verdict rules, categories,
the audit log and site settings. Every store opens a short-lived connection
per call and converts sqlite3 errors into InfrastructureError, so callers
can tell "the store is down" apart from "nothing matched".

The audit sink is fire-and-forget: a failed write is logged and dropped.
"""

import json
import logging
import sqlite3
from contextlib import contextmanager
from typing import Iterable, Optional

from pydantic import ValidationError

from intake.errors import InfrastructureError
from intake.models import AuditEvent, Category, IngredientCatalogEntry, VerdictRule
from verdict.constants import MAX_ACTIVE_RULES, Verdict, coerce_verdict

logger = logging.getLogger(__name__)

# Catalog reads are paged so a large catalog never lands in one query
CATALOG_PAGE_SIZE = 500


def init_engine_tables(db_path: str):
    """Create engine tables if they don't exist."""
    with _connection(db_path, 'schema') as conn:
        cursor = conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS ingredients (
                id              INTEGER PRIMARY KEY AUTOINCREMENT,
                canonical_name  TEXT NOT NULL UNIQUE COLLATE NOCASE,
                verdict         TEXT NOT NULL DEFAULT 'unknown',
                aliases_json    TEXT DEFAULT '[]',
                reason          TEXT,
                created_via     TEXT,
                source_id       TEXT,
                last_reviewed   DATETIME,
                created_at      DATETIME DEFAULT CURRENT_TIMESTAMP
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS verdict_rules (
                id                              INTEGER PRIMARY KEY AUTOINCREMENT,
                name                            TEXT NOT NULL,
                condition_type                  TEXT NOT NULL,
                ingredient_condition_json       TEXT DEFAULT '[]',
                ingredient_verdict_condition    TEXT,
                category_condition_json         TEXT DEFAULT '[]',
                action                          TEXT NOT NULL,
                warning_message                 TEXT,
                is_active                       BOOLEAN DEFAULT 1,
                priority                        INTEGER DEFAULT 0,
                applied_count                   INTEGER DEFAULT 0
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS categories (
                id                      INTEGER PRIMARY KEY AUTOINCREMENT,
                name                    TEXT NOT NULL,
                slug                    TEXT NOT NULL,
                parent_id               INTEGER REFERENCES categories(id),
                ai_suggested            BOOLEAN DEFAULT 0,
                ai_source               TEXT,
                harmful_json            TEXT DEFAULT '[]',
                created_at              DATETIME DEFAULT CURRENT_TIMESTAMP
            )
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_categories_name_parent
            ON categories(name, parent_id)
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS audit_log (
                id                  INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp           DATETIME DEFAULT CURRENT_TIMESTAMP,
                action              TEXT NOT NULL,
                source_type         TEXT,
                source_id           TEXT,
                target_collection   TEXT,
                target_id           INTEGER,
                target_name         TEXT,
                metadata_json       TEXT,
                success             BOOLEAN DEFAULT 1,
                error_message       TEXT
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS site_settings (
                key         TEXT PRIMARY KEY,
                value_json  TEXT,
                updated_at  DATETIME DEFAULT CURRENT_TIMESTAMP
            )
        """)

    logger.info(f"Engine tables initialized in {db_path}")


@contextmanager
def _connection(db_path: str, store: str):
    """Short-lived connection; commits on success, wraps sqlite3 errors."""
    try:
        conn = sqlite3.connect(db_path)
    except sqlite3.Error as e:
        raise InfrastructureError(f"{store}: cannot open {db_path}: {e}", store=store) from e
    conn.row_factory = sqlite3.Row
    try:
        yield conn
        conn.commit()
    except sqlite3.Error as e:
        conn.rollback()
        raise InfrastructureError(f"{store}: {e}", store=store) from e
    finally:
        conn.close()


def _loads(value, default):
    if not value:
        return default
    try:
        return json.loads(value)
    except (TypeError, ValueError):
        logger.warning(f"⚠️ Unreadable JSON column value: {value!r}")
        return default


def _parse_rows(rows, convert, label: str) -> list:
    """Convert rows to records, skipping (and logging) rows that fail validation."""
    records = []
    for row in rows:
        try:
            records.append(convert(row))
        except ValidationError as e:
            logger.warning(f"⚠️ Skipping malformed {label} {row['id']}: {e}")
    return records


def _where_clause(where: Optional[dict], columns: dict) -> tuple[str, list]:
    """
    Equality filters from a {field: value} dict. None means IS NULL.
    Unknown fields are a programming error.
    """
    if not where:
        return '', []
    parts, params = [], []
    for field, value in where.items():
        if field not in columns:
            raise ValueError(f"Unsupported filter field: {field}")
        column = columns[field]
        if value is None:
            parts.append(f"{column} IS NULL")
        else:
            parts.append(f"{column} = ?")
            params.append(value)
    return ' WHERE ' + ' AND '.join(parts), params


# ═══════════════════════════════════════════════════════
#  Ingredient catalog
# ═══════════════════════════════════════════════════════

class SqliteCatalogStore:
    FILTER_COLUMNS = {
        'id': 'id',
        'canonical_name': 'canonical_name',
        'verdict': 'verdict',
    }

    def __init__(self, db_path: str):
        self.db_path = db_path

    @staticmethod
    def _row_to_entry(row) -> IngredientCatalogEntry:
        return IngredientCatalogEntry(
            id=row['id'],
            canonical_name=row['canonical_name'],
            verdict=row['verdict'] or 'unknown',
            aliases=_loads(row['aliases_json'], []),
            reason=row['reason'],
        )

    def find(self, where: Optional[dict] = None, limit: Optional[int] = None) -> list[IngredientCatalogEntry]:
        """All matching entries, fetched page by page in id order."""
        clause, params = _where_clause(where, self.FILTER_COLUMNS)
        entries: list[IngredientCatalogEntry] = []
        offset = 0
        with _connection(self.db_path, 'ingredients') as conn:
            while True:
                page_size = CATALOG_PAGE_SIZE
                if limit is not None:
                    page_size = min(page_size, limit - len(entries))
                    if page_size <= 0:
                        break
                rows = conn.execute(
                    f"SELECT * FROM ingredients{clause} ORDER BY id LIMIT ? OFFSET ?",
                    params + [page_size, offset],
                ).fetchall()
                entries.extend(_parse_rows(rows, self._row_to_entry, 'ingredient'))
                if len(rows) < page_size:
                    break
                offset += len(rows)
        logger.debug(f"Catalog fetch: {len(entries)} entries")
        return entries

    def find_by_ids(self, ids: Iterable[int]) -> list[IngredientCatalogEntry]:
        ids = list(dict.fromkeys(ids))
        if not ids:
            return []
        placeholders = ','.join('?' * len(ids))
        with _connection(self.db_path, 'ingredients') as conn:
            rows = conn.execute(
                f"SELECT * FROM ingredients WHERE id IN ({placeholders}) ORDER BY id", ids
            ).fetchall()
        return _parse_rows(rows, self._row_to_entry, 'ingredient')

    def review_records(self) -> list[dict]:
        """{'id', 'name', 'last_reviewed'} for every entry, for freshness checks."""
        with _connection(self.db_path, 'ingredients') as conn:
            rows = conn.execute(
                "SELECT id, canonical_name, last_reviewed FROM ingredients ORDER BY id"
            ).fetchall()
        return [{'id': r['id'], 'name': r['canonical_name'], 'last_reviewed': r['last_reviewed']} for r in rows]

    def mark_reviewed(self, ingredient_id: int, reviewed_at: str):
        with _connection(self.db_path, 'ingredients') as conn:
            conn.execute("UPDATE ingredients SET last_reviewed = ? WHERE id = ?", (reviewed_at, ingredient_id))

    def create(self, data: dict) -> IngredientCatalogEntry:
        """Insert a catalog entry. Duplicate names raise InfrastructureError."""
        with _connection(self.db_path, 'ingredients') as conn:
            cursor = conn.execute(
                """
                INSERT INTO ingredients
                (canonical_name, verdict, aliases_json, reason, created_via, source_id)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    data['canonical_name'],
                    (coerce_verdict(data.get('verdict')) or Verdict.UNKNOWN).value,
                    json.dumps(list(data.get('aliases') or [])),
                    data.get('reason'),
                    data.get('created_via'),
                    data.get('source_id'),
                ),
            )
            row = conn.execute("SELECT * FROM ingredients WHERE id = ?", (cursor.lastrowid,)).fetchone()
        return self._row_to_entry(row)


# ═══════════════════════════════════════════════════════
#  Verdict rules
# ═══════════════════════════════════════════════════════

class SqliteRuleStore:
    # Fields the engine (or an admin script) may write back
    UPDATABLE = {
        'applied_count': 'applied_count',
        'is_active': 'is_active',
        'priority': 'priority',
        'warning_message': 'warning_message',
    }

    def __init__(self, db_path: str):
        self.db_path = db_path

    @staticmethod
    def _row_to_rule(row) -> VerdictRule:
        return VerdictRule(
            id=row['id'],
            name=row['name'],
            condition_type=row['condition_type'],
            ingredient_condition=_loads(row['ingredient_condition_json'], []),
            ingredient_verdict_condition=row['ingredient_verdict_condition'],
            category_condition=_loads(row['category_condition_json'], []),
            action=row['action'],
            warning_message=row['warning_message'],
            is_active=bool(row['is_active']),
            priority=row['priority'] or 0,
            applied_count=row['applied_count'] or 0,
        )

    def find_active(self, limit: int = MAX_ACTIVE_RULES) -> list[VerdictRule]:
        """Active rules, highest priority first. Malformed rows are skipped."""
        with _connection(self.db_path, 'verdict_rules') as conn:
            rows = conn.execute(
                "SELECT * FROM verdict_rules WHERE is_active = 1 ORDER BY priority DESC, id LIMIT ?",
                (limit,),
            ).fetchall()

        return _parse_rows(rows, self._row_to_rule, 'verdict rule')

    def create(self, data: dict) -> VerdictRule:
        rule = VerdictRule(id=0, **data)
        with _connection(self.db_path, 'verdict_rules') as conn:
            cursor = conn.execute(
                """
                INSERT INTO verdict_rules
                (name, condition_type, ingredient_condition_json, ingredient_verdict_condition,
                 category_condition_json, action, warning_message, is_active, priority, applied_count)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    rule.name,
                    rule.condition_type.value,
                    json.dumps(rule.ingredient_condition),
                    rule.ingredient_verdict_condition.value if rule.ingredient_verdict_condition else None,
                    json.dumps(rule.category_condition),
                    rule.action.value,
                    rule.warning_message,
                    int(rule.is_active),
                    rule.priority,
                    rule.applied_count,
                ),
            )
            rule_id = cursor.lastrowid
        return rule.model_copy(update={'id': rule_id})

    def update(self, rule_id: int, data: dict):
        fields = [f for f in data if f in self.UPDATABLE]
        if not fields:
            return
        assignments = ', '.join(f"{self.UPDATABLE[f]} = ?" for f in fields)
        with _connection(self.db_path, 'verdict_rules') as conn:
            conn.execute(
                f"UPDATE verdict_rules SET {assignments} WHERE id = ?",
                [data[f] for f in fields] + [rule_id],
            )


# ═══════════════════════════════════════════════════════
#  Categories
# ═══════════════════════════════════════════════════════

class SqliteCategoryStore:
    FILTER_COLUMNS = {
        'id': 'id',
        'name': 'name',
        'slug': 'slug',
        'parent': 'parent_id',
    }

    def __init__(self, db_path: str):
        self.db_path = db_path

    @staticmethod
    def _row_to_category(row) -> Category:
        return Category(
            id=row['id'],
            name=row['name'],
            slug=row['slug'],
            parent=row['parent_id'],
            ai_suggested=bool(row['ai_suggested']),
            ai_source=row['ai_source'],
            harmful_ingredients=_loads(row['harmful_json'], []),
        )

    def find(self, where: Optional[dict] = None, limit: Optional[int] = None) -> list[Category]:
        clause, params = _where_clause(where, self.FILTER_COLUMNS)
        sql = f"SELECT * FROM categories{clause} ORDER BY id"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        with _connection(self.db_path, 'categories') as conn:
            rows = conn.execute(sql, params).fetchall()
        return _parse_rows(rows, self._row_to_category, 'category')

    def find_by_id(self, category_id: int) -> Optional[Category]:
        found = self.find({'id': category_id}, limit=1)
        return found[0] if found else None

    def create(self, data: dict) -> Category:
        harmful = [
            h.model_dump() if hasattr(h, 'model_dump') else h
            for h in (data.get('harmful_ingredients') or [])
        ]
        with _connection(self.db_path, 'categories') as conn:
            cursor = conn.execute(
                """
                INSERT INTO categories (name, slug, parent_id, ai_suggested, ai_source, harmful_json)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    data['name'],
                    data['slug'],
                    data.get('parent'),
                    int(bool(data.get('ai_suggested', False))),
                    data.get('ai_source'),
                    json.dumps(harmful),
                ),
            )
            row = conn.execute("SELECT * FROM categories WHERE id = ?", (cursor.lastrowid,)).fetchone()
        return self._row_to_category(row)


# ═══════════════════════════════════════════════════════
#  Audit log
# ═══════════════════════════════════════════════════════

class SqliteAuditSink:
    """Persists audit events. Never raises."""

    def __init__(self, db_path: str):
        self.db_path = db_path

    def record(self, event) -> Optional[int]:
        try:
            if not isinstance(event, AuditEvent):
                event = AuditEvent(**event)
            with _connection(self.db_path, 'audit_log') as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO audit_log
                    (action, source_type, source_id, target_collection, target_id,
                     target_name, metadata_json, success, error_message)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        event.action,
                        event.source_type,
                        event.source_id,
                        event.target_collection,
                        event.target_id,
                        event.target_name,
                        json.dumps(event.metadata, default=str),
                        int(event.success),
                        event.error_message,
                    ),
                )
                audit_id = cursor.lastrowid
            logger.debug(f"Audit log saved with ID: {audit_id} ({event.action})")
            return audit_id
        except Exception as e:
            logger.error(f"Failed to save audit log: {e}")
            return None

    def fetch(self, action: Optional[str] = None) -> list[dict]:
        """Audit rows, oldest first (used by reports and tests)."""
        sql = "SELECT * FROM audit_log"
        params = []
        if action:
            sql += " WHERE action = ?"
            params.append(action)
        sql += " ORDER BY id"
        with _connection(self.db_path, 'audit_log') as conn:
            rows = conn.execute(sql, params).fetchall()
        out = []
        for r in rows:
            d = dict(r)
            d['metadata'] = _loads(d.pop('metadata_json'), {})
            d['success'] = bool(d['success'])
            out.append(d)
        return out


def record_audit_event(sink, event):
    """Send an event to any audit sink; failures are logged, never raised."""
    if sink is None:
        return None
    try:
        return sink.record(event)
    except Exception as e:
        logger.error(f"Audit sink failed for '{event.get('action') if isinstance(event, dict) else event}': {e}",
                     exc_info=True)
        return None
