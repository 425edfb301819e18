"""
categories.py — Category path hydration.

"Food & Beverage > Protein Bars" resolves (or creates) one category per
segment, each child linked to the category resolved for the segment
before it. Existing categories are reused as-is and never reparented, so
hydrating the same path twice creates nothing the second time.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional

from intake.errors import InvalidPathError
from intake.store import record_audit_event

logger = logging.getLogger(__name__)

PATH_SEPARATOR = '>'

_SLUG_PATTERN = re.compile(r'[^a-z0-9]+')


def slugify(name: str) -> str:
    """Lowercase; runs of non-alphanumerics become '-'; edge dashes trimmed."""
    return _SLUG_PATTERN.sub('-', name.lower()).strip('-')


def split_category_path(path) -> list[str]:
    if not path:
        return []
    return [p.strip() for p in str(path).split(PATH_SEPARATOR) if p.strip()]


@dataclass
class HydrationResult:
    category_id: int
    created: bool
    parent_id: Optional[int] = None  # top-level category, only for multi-segment paths


class CategoryHydrator:

    def __init__(self, category_store, audit_sink=None):
        self.category_store = category_store
        self.audit_sink = audit_sink

    def hydrate(self, path: str, ai_suggested: bool = True, source_id: Optional[str] = None) -> HydrationResult:
        """
        Resolve a '>'-separated category path to the id of its last segment.

        Raises:
            InvalidPathError: the path has no non-empty segments
            InfrastructureError: the category store failed
        """
        segments = split_category_path(path)
        if not segments:
            raise InvalidPathError(path)

        root_id = None
        previous_id = None
        created = False

        for depth, name in enumerate(segments):
            where = {'name': name}
            if depth > 0:
                where['parent'] = previous_id

            existing = self.category_store.find(where, limit=1)
            if existing:
                category_id = existing[0].id
            else:
                category_id = self._create(name, previous_id if depth > 0 else None, ai_suggested, source_id)
                created = True

            if depth == 0:
                root_id = category_id
            previous_id = category_id

        return HydrationResult(
            category_id=previous_id,
            created=created,
            parent_id=root_id if len(segments) > 1 else None,
        )

    def _create(self, name: str, parent_id: Optional[int], ai_suggested: bool, source_id: Optional[str]) -> int:
        category = self.category_store.create({
            'name': name,
            'slug': slugify(name),
            'parent': parent_id,
            'ai_suggested': ai_suggested,
            'ai_source': source_id,
        })
        logger.info(f"Category created: '{name}' (id={category.id}, parent={parent_id})")
        record_audit_event(self.audit_sink, {
            'action': 'category_created',
            'source_type': 'ai' if ai_suggested else 'system',
            'source_id': source_id,
            'target_collection': 'categories',
            'target_id': category.id,
            'target_name': name,
            'metadata': {'parent_id': parent_id, 'slug': category.slug},
        })
        return category.id
