"""
config.py — Paths and automation thresholds.

Thresholds live in the site_settings table under 'automation_thresholds'
as a JSON object:

    {"enable_fuzzy_matching": true, "fuzzy_match_threshold": 2,
     "freshness_threshold_days": 180}

They are cached for 60 seconds. If the row is missing or unreadable the
defaults are used and a warning is logged; thresholds never block a save.
"""

import json
import logging
import os
import sqlite3
import time
from typing import Optional

from pydantic import ValidationError

from intake.models import ThresholdConfig

logger = logging.getLogger(__name__)

BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
DATA_DIR = os.path.join(BASE_DIR, 'data')
ENGINE_DB_PATH = os.environ.get('VERDICT_ENGINE_DB', os.path.join(DATA_DIR, 'verdict_engine.db'))

THRESHOLDS_SETTING_KEY = 'automation_thresholds'
THRESHOLDS_CACHE_TTL = 60  # seconds


class ThresholdProvider:
    """Reads automation thresholds from site_settings with a short TTL cache."""

    def __init__(self, db_path: str = ENGINE_DB_PATH, ttl: float = THRESHOLDS_CACHE_TTL, clock=time.monotonic):
        self.db_path = db_path
        self.ttl = ttl
        self._clock = clock
        self._cached: Optional[ThresholdConfig] = None
        self._cached_at = 0.0

    def get_thresholds(self) -> ThresholdConfig:
        now = self._clock()
        if self._cached is not None and now - self._cached_at < self.ttl:
            return self._cached

        thresholds, ok = self._load()
        if not ok:
            return thresholds
        self._cached = thresholds
        self._cached_at = now
        return thresholds

    def clear_cache(self):
        """Drop the cached thresholds (after settings are edited)."""
        self._cached = None
        self._cached_at = 0.0
        logger.info("Threshold cache cleared")

    def _load(self) -> tuple[ThresholdConfig, bool]:
        """(thresholds, ok). Defaults that stand in for a failed read are not cached."""
        try:
            conn = sqlite3.connect(self.db_path)
            try:
                row = conn.execute(
                    "SELECT value_json FROM site_settings WHERE key = ?",
                    (THRESHOLDS_SETTING_KEY,),
                ).fetchone()
            finally:
                conn.close()
        except sqlite3.Error as e:
            logger.warning(f"⚠️ Failed to read automation thresholds, using defaults: {e}")
            return ThresholdConfig(), False

        if row is None or not row[0]:
            return ThresholdConfig(), True

        try:
            return ThresholdConfig(**json.loads(row[0])), True
        except (ValueError, TypeError, ValidationError) as e:
            logger.warning(f"⚠️ Invalid automation thresholds, using defaults: {e}")
            return ThresholdConfig(), False


def save_thresholds(db_path: str, thresholds: ThresholdConfig):
    """Write thresholds into site_settings (admin scripts and tests)."""
    conn = sqlite3.connect(db_path)
    try:
        conn.execute(
            """
            INSERT INTO site_settings (key, value_json, updated_at)
            VALUES (?, ?, CURRENT_TIMESTAMP)
            ON CONFLICT(key) DO UPDATE SET value_json = excluded.value_json,
                                           updated_at = excluded.updated_at
            """,
            (THRESHOLDS_SETTING_KEY, thresholds.model_dump_json()),
        )
        conn.commit()
    finally:
        conn.close()
