"""
match.py — Stage 2: Ingredient Resolution Engine.

Architecture:
  Each normalized token runs through a strict waterfall against an
  in-memory index of the ingredient catalog; the first strategy that hits
  wins:

    1. exact    — canonical name (case-insensitive)
    2. alias    — alias table
    3. partial  — token contains a catalog key, or a key contains the token.
                  Keys are scanned longest-first (ties alphabetical) so the
                  result does not depend on catalog order.
    4. fuzzy    — bounded Levenshtein distance, canonical names only, only
                  when enabled and the token has >= 4 characters

Fuzzy hits are probabilistic and are reported to the audit sink for human
review. Every matched token feeds a worst-case verdict
(avoid > caution > recommend).

Anti-Hallucination: never creates catalog entries. Output ids always come
from the catalog passed in.
"""

import logging
from typing import Iterable, Optional

from rapidfuzz.distance import Levenshtein

from intake.clean import NormalizedToken, normalize_ingredients
from intake.models import (
    IngredientCatalogEntry, ParsedIngredient, ResolveResult, ThresholdConfig,
)
from intake.store import record_audit_event
from verdict.constants import MatchType, worst_verdict

logger = logging.getLogger(__name__)

# Tokens shorter than this never go through fuzzy matching
MIN_FUZZY_TOKEN_LENGTH = 4

# Extra slack on top of the threshold for the length pre-filter
LENGTH_PREFILTER_SLACK = 2


# ═══════════════════════════════════════════════════════
#  Edit distance
# ═══════════════════════════════════════════════════════

def edit_distance(a: str, b: str, score_cutoff: Optional[int] = None) -> int:
    """
    Levenshtein distance: unit-cost insert / delete / substitute, no
    transpositions. With score_cutoff, any distance above the cutoff is
    reported as cutoff + 1.
    """
    return Levenshtein.distance(a, b, score_cutoff=score_cutoff)


def within_length_window(query: str, candidate: str, threshold: int) -> bool:
    """Length pre-filter that must run before edit_distance on catalog scans."""
    return abs(len(query) - len(candidate)) <= threshold + LENGTH_PREFILTER_SLACK


# ═══════════════════════════════════════════════════════
#  Catalog index
# ═══════════════════════════════════════════════════════

class CatalogIndex:
    """
    Lookup tables built once per save from a fetched catalog.
    Duplicate names/aliases: last write wins.
    """

    def __init__(self, entries: Iterable[IngredientCatalogEntry]):
        self._entries: dict[int, IngredientCatalogEntry] = {}
        self._name_map: dict[str, IngredientCatalogEntry] = {}    # lower(name) → entry
        self._alias_map: dict[str, IngredientCatalogEntry] = {}   # lower(alias) → entry
        self._fuzzy_names: list[str] = []                          # canonical names, catalog order

        for entry in entries:
            self._entries[entry.id] = entry
            name = entry.canonical_name.strip().lower()
            if name:
                if name not in self._name_map:
                    self._fuzzy_names.append(name)
                self._name_map[name] = entry
            for alias in entry.aliases:
                alias_low = alias.strip().lower()
                if alias_low:
                    self._alias_map[alias_low] = entry

        # Partial-match keys: names and aliases, longest first, then alphabetical
        partial = {k: v for k, v in self._alias_map.items()}
        partial.update(self._name_map)
        self._partial_keys: list[tuple[str, IngredientCatalogEntry]] = sorted(
            partial.items(), key=lambda kv: (-len(kv[0]), kv[0])
        )

        logger.debug(
            f"CatalogIndex: {len(self._entries)} entries, {len(self._name_map)} names, "
            f"{len(self._alias_map)} aliases"
        )

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, ingredient_id: int) -> Optional[IngredientCatalogEntry]:
        return self._entries.get(ingredient_id)

    def entries_for(self, ingredient_ids: Iterable[int]) -> list[IngredientCatalogEntry]:
        return [self._entries[i] for i in ingredient_ids if i in self._entries]

    def lookup_exact(self, token: str) -> Optional[IngredientCatalogEntry]:
        return self._name_map.get(token)

    def lookup_alias(self, token: str) -> Optional[IngredientCatalogEntry]:
        return self._alias_map.get(token)

    def lookup_partial(self, token: str) -> Optional[IngredientCatalogEntry]:
        for key, entry in self._partial_keys:
            if key in token or token in key:
                return entry
        return None

    def lookup_fuzzy(self, token: str, threshold: int) -> tuple[Optional[IngredientCatalogEntry], Optional[int]]:
        """Closest canonical name within threshold; ties go to the first encountered."""
        best_entry = None
        best_distance = None
        for name in self._fuzzy_names:
            if not within_length_window(token, name, threshold):
                continue
            distance = edit_distance(token, name, score_cutoff=threshold)
            if distance > threshold:
                continue
            if best_distance is None or distance < best_distance:
                best_entry = self._name_map[name]
                best_distance = distance
        return best_entry, best_distance


# ═══════════════════════════════════════════════════════
#  Resolver
# ═══════════════════════════════════════════════════════

class IngredientResolver:
    """
    Resolves free-text ingredient lists into catalog ids.
    The audit sink (optional) receives one event per fuzzy match.
    """

    def __init__(self, audit_sink=None):
        self.audit_sink = audit_sink

    def resolve(self, raw_text: Optional[str], catalog, thresholds: Optional[ThresholdConfig] = None,
                product_name: Optional[str] = None) -> ResolveResult:
        """
        Resolve raw ingredient text against a catalog.

        Args:
            raw_text: comma/semicolon separated ingredient list (may be empty)
            catalog: a CatalogIndex or an iterable of IngredientCatalogEntry
            thresholds: fuzzy matching switches; defaults when None
            product_name: only used to label audit events

        Returns:
            ResolveResult with linked_ids, unmatched, auto_verdict, parsed
        """
        result = ResolveResult()
        tokens = normalize_ingredients(raw_text)
        if not tokens:
            return result

        thresholds = thresholds or ThresholdConfig()
        index = catalog if isinstance(catalog, CatalogIndex) else CatalogIndex(catalog)

        seen_ids: set[int] = set()
        matched_verdicts = []

        for token in tokens:
            entry, match_type, distance, key = self._match_token(token, index, thresholds)

            if entry is None:
                result.unmatched.append(token.raw)
                result.parsed.append(ParsedIngredient(
                    raw_name=token.raw,
                    normalized_name=token.normalized,
                ))
                continue

            if entry.id not in seen_ids:
                seen_ids.add(entry.id)
                result.linked_ids.append(entry.id)
            matched_verdicts.append(entry.verdict)

            parsed = ParsedIngredient(
                raw_name=token.raw,
                normalized_name=key,
                matched=True,
                match_type=match_type,
                matched_canonical_name=entry.canonical_name,
                ingredient_id=entry.id,
                verdict=entry.verdict,
                fuzzy_distance=distance,
            )
            result.parsed.append(parsed)

            if match_type == MatchType.FUZZY:
                self._report_fuzzy_match(parsed, product_name)

        result.auto_verdict = worst_verdict(matched_verdicts)

        logger.info(
            f"Resolved {len(tokens)} tokens: {len(result.linked_ids)} linked, "
            f"{len(result.unmatched)} unmatched, {len(result.fuzzy_matches)} fuzzy, "
            f"auto_verdict={result.auto_verdict.value if result.auto_verdict else None}"
        )
        return result

    @staticmethod
    def _match_token(token: NormalizedToken, index: CatalogIndex, thresholds: ThresholdConfig):
        """
        Strategy waterfall for one token → (entry, match_type, distance, key).
        Exact and alias lookups try the literal key first so numbered names
        ("red dye 3" vs "red dye 40") are not collapsed by quantity stripping.
        """
        keys = [k for k in dict.fromkeys((token.literal, token.normalized)) if k]
        for key in keys:
            hit = index.lookup_exact(key)
            if hit:
                return hit, MatchType.EXACT, None, key
            hit = index.lookup_alias(key)
            if hit:
                return hit, MatchType.ALIAS, None, key

        normalized = token.normalized
        hit = index.lookup_partial(normalized)
        if hit:
            return hit, MatchType.PARTIAL, None, normalized

        if thresholds.enable_fuzzy_matching and len(normalized) >= MIN_FUZZY_TOKEN_LENGTH:
            hit, distance = index.lookup_fuzzy(normalized, thresholds.fuzzy_match_threshold)
            if hit:
                return hit, MatchType.FUZZY, distance, normalized

        return None, None, None, normalized

    def _report_fuzzy_match(self, parsed: ParsedIngredient, product_name: Optional[str]):
        logger.warning(
            f"⚠️ Fuzzy match: '{parsed.raw_name}' ≈ '{parsed.matched_canonical_name}' "
            f"(distance {parsed.fuzzy_distance}) — flagged for review"
        )
        record_audit_event(self.audit_sink, {
            'action': 'ai_ingredient_parsed',
            'source_type': 'system',
            'target_collection': 'ingredients',
            'target_id': parsed.ingredient_id,
            'target_name': parsed.matched_canonical_name,
            'metadata': {
                'match_type': MatchType.FUZZY.value,
                'raw_name': parsed.raw_name,
                'normalized_name': parsed.normalized_name,
                'fuzzy_distance': parsed.fuzzy_distance,
                'product_name': product_name,
            },
        })
