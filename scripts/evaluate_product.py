#!/usr/bin/env python3
"""
Product Verdict Evaluator

Runs one product through the verdict pipeline against an engine database
and prints the decision as JSON.

Usage:
    python scripts/evaluate_product.py --db data/verdict_engine.db \
        --ingredients "Sugar, Red Dye 40 (FD&C), Salt 2%" \
        --category "Food & Beverage > Candy" --verdict recommend

Exit code is 0 when the product may be saved, 2 when the save is vetoed.
"""

import argparse
import json
import logging
import sys

from pydantic import ValidationError

from intake.config import ENGINE_DB_PATH, ThresholdProvider
from intake.errors import VerdictEngineError
from intake.models import ProductSubmission
from intake.pipeline import VerdictPipeline
from intake.store import (
    SqliteAuditSink, SqliteCatalogStore, SqliteCategoryStore, SqliteRuleStore, init_engine_tables,
)
from verdict.freshness import summarize_freshness

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def build_pipeline(db_path: str, create_missing: bool = False) -> VerdictPipeline:
    return VerdictPipeline(
        catalog_store=SqliteCatalogStore(db_path),
        rule_store=SqliteRuleStore(db_path),
        category_store=SqliteCategoryStore(db_path),
        audit_sink=SqliteAuditSink(db_path),
        threshold_provider=ThresholdProvider(db_path),
        create_missing=create_missing,
    )


def report_freshness(db_path: str) -> int:
    try:
        thresholds = ThresholdProvider(db_path).get_thresholds()
        records = SqliteCatalogStore(db_path).review_records()
    except VerdictEngineError as e:
        logger.error(f"Freshness check failed: {e}")
        return 1

    summary = summarize_freshness(records, thresholds.freshness_threshold_days, audit_sink=SqliteAuditSink(db_path))
    print(json.dumps({
        'threshold_days': summary.threshold_days,
        'counts': summary.counts,
        'stale_ids': summary.stale_ids,
        'needs_review_ids': summary.needs_review_ids,
    }, indent=2))
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(description='Evaluate a product verdict against the engine database')
    parser.add_argument('--db', default=ENGINE_DB_PATH, help='Path to the engine SQLite database')
    parser.add_argument('--ingredients', help='Raw ingredient list (comma/semicolon separated)')
    parser.add_argument('--category', help='Category path, e.g. "Food & Beverage > Protein Bars"')
    parser.add_argument('--verdict', choices=['recommend', 'caution', 'avoid'], help='Proposed verdict')
    parser.add_argument('--override', action='store_true', help='Set verdict_override (bypass the veto)')
    parser.add_argument('--name', help='Product name (for logs and audit)')
    parser.add_argument('--create-missing', action='store_true', help='Create unknown ingredients for unmatched names')
    parser.add_argument('--init', action='store_true', help='Create engine tables before evaluating')
    parser.add_argument('--freshness', action='store_true', help='Report catalog review freshness instead of evaluating')
    args = parser.parse_args(argv)

    if args.init:
        init_engine_tables(args.db)

    if args.freshness:
        return report_freshness(args.db)
    if not args.ingredients:
        parser.error('--ingredients is required unless --freshness is given')

    try:
        submission = ProductSubmission(
            name=args.name,
            ingredients_text=args.ingredients,
            category_path=args.category,
            proposed_verdict=args.verdict,
            verdict_override=args.override,
        )
        decision = build_pipeline(args.db, create_missing=args.create_missing).decide(submission)
    except (ValidationError, VerdictEngineError) as e:
        logger.error(f"Evaluation failed: {e}")
        return 1

    print(json.dumps(decision.to_dict(), indent=2, ensure_ascii=False))
    return 0 if decision.can_save else 2


if __name__ == '__main__':
    sys.exit(main())
