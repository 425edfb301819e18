"""
clean.py — Stage 1: Ingredient Text Normalization.

Responsibilities:
  - Invisible char removal, Unicode NFC normalization
  - Split raw ingredient lists on commas / semicolons
  - Strip parenthetical notes and trailing quantity / percentage suffixes
  - Fold descriptive adjectives and unit abbreviations to nothing
  - Fold common vitamin synonyms to their canonical "vitamin x" form

Design principles:
  - Pure: no I/O, no catalog access
  - Never crash on bad input — empty/absent text yields an empty list
  - Order and duplicates are preserved (dedup happens at the ID level)
"""

import re
import unicodedata
from typing import Any, NamedTuple

# ── Fragment delimiters ──
_DELIMITER_PATTERN = re.compile(r'[,;]')

# ── Parenthetical notes: "Red Dye 40 (FD&C)" → "Red Dye 40" ──
_PAREN_PATTERN = re.compile(r'\s*\([^)]*\)')

# ── Trailing quantity / percentage: "salt 2%" → "salt" ──
# The number must stand alone, so "vitamin b12" keeps its digits.
_TRAILING_QTY_PATTERN = re.compile(r'\s+\d+%?$')

# ── Numeric amounts with units anywhere in the fragment: "zinc 15 mg" ──
_AMOUNT_UNIT_PATTERN = re.compile(
    r'\b\d+(?:\.\d+)?\s*(?:mg|mcg|µg|ug|g|kg|ml|iu|oz|%)(?=\s|$)'
)

# Fragments shorter than this are delimiter noise ("a", "-")
MIN_FRAGMENT_LENGTH = 2

# Descriptive adjectives that never change ingredient identity
DESCRIPTOR_WORDS = {
    'organic', 'natural', 'pure', 'hydrogenated', 'partially',
    'certified', 'raw', 'fresh', 'dried', 'dehydrated', 'filtered',
    'unbleached', 'bleached', 'enriched', 'refined', 'unrefined',
    'cold-pressed', 'non-gmo', 'premium', 'whole', 'concentrated',
    'added',
}

# Unit abbreviations left behind after numbers are stripped
UNIT_WORDS = {
    'mg', 'mcg', 'µg', 'ug', 'g', 'kg', 'ml', 'iu', 'oz',
}

# Common vitamin synonyms → canonical forms (lowercase).
# Longer phrases are applied first so "d-alpha tocopherol" wins over "tocopherol".
VITAMIN_SYNONYMS: dict[str, str] = {
    'ascorbic acid': 'vitamin c',
    'sodium ascorbate': 'vitamin c',
    'l-ascorbic acid': 'vitamin c',
    'tocopherol': 'vitamin e',
    'tocopherols': 'vitamin e',
    'mixed tocopherols': 'vitamin e',
    'd-alpha tocopherol': 'vitamin e',
    'dl-alpha tocopherol': 'vitamin e',
    'tocopheryl acetate': 'vitamin e',
    'retinol': 'vitamin a',
    'retinyl palmitate': 'vitamin a',
    'beta carotene': 'vitamin a',
    'cholecalciferol': 'vitamin d3',
    'ergocalciferol': 'vitamin d2',
    'thiamine': 'vitamin b1',
    'thiamin': 'vitamin b1',
    'thiamine mononitrate': 'vitamin b1',
    'thiamine hydrochloride': 'vitamin b1',
    'riboflavin': 'vitamin b2',
    'niacin': 'vitamin b3',
    'niacinamide': 'vitamin b3',
    'nicotinamide': 'vitamin b3',
    'pantothenic acid': 'vitamin b5',
    'calcium pantothenate': 'vitamin b5',
    'pyridoxine': 'vitamin b6',
    'pyridoxine hydrochloride': 'vitamin b6',
    'biotin': 'vitamin b7',
    'folic acid': 'vitamin b9',
    'folate': 'vitamin b9',
    'cyanocobalamin': 'vitamin b12',
    'methylcobalamin': 'vitamin b12',
    'cobalamin': 'vitamin b12',
    'phylloquinone': 'vitamin k1',
    'phytonadione': 'vitamin k1',
    'menaquinone': 'vitamin k2',
}

_DESCRIPTOR_PATTERN = re.compile(
    r'(?<![\w-])(?:' + '|'.join(
        re.escape(w) for w in sorted(DESCRIPTOR_WORDS | UNIT_WORDS, key=len, reverse=True)
    ) + r')(?![\w-])'
)

_VITAMIN_PATTERN = re.compile(
    r'(?<![\w-])(?:' + '|'.join(
        re.escape(k) for k in sorted(VITAMIN_SYNONYMS, key=len, reverse=True)
    ) + r')(?![\w-])'
)


class NormalizedToken(NamedTuple):
    raw: str         # trimmed fragment as it appeared in the input
    normalized: str  # lookup key used by the resolver
    literal: str = ''  # lowercased fragment before quantities and descriptors are stripped


# ═══════════════════════════════════════════════════════
#  Pre-processing: clean raw string values
# ═══════════════════════════════════════════════════════

def sanitize_string(value: Any) -> str | None:
    """
    Clean a raw ingredient text value:
    1. Convert to string
    2. Remove invisible characters (BOM, ZWSP, NBSP, tabs, newlines)
    3. Normalize Unicode (NFC)
    4. Return None for empty/whitespace-only input
    """
    if value is None:
        return None

    s = str(value)
    s = s.replace('\ufeff', '')          # BOM
    s = s.replace('\xa0', ' ')
    s = s.replace('\u200b', '')          # Zero-width space
    s = s.replace('\u200c', '')
    s = s.replace('\u200d', '')
    s = s.replace('\t', ' ')
    s = s.replace('\r', ' ').replace('\n', ' ')
    s = unicodedata.normalize('NFC', s)
    s = s.strip()
    return s or None


def split_fragments(raw_text: Any) -> list[str]:
    """Split an ingredient list on commas/semicolons, dropping noise fragments."""
    text = sanitize_string(raw_text)
    if not text:
        return []
    parts = (p.strip() for p in _DELIMITER_PATTERN.split(text))
    return [p for p in parts if len(p) >= MIN_FRAGMENT_LENGTH]


# ═══════════════════════════════════════════════════════
#  Token normalization
# ═══════════════════════════════════════════════════════

def fold_vitamin_synonyms(token: str) -> str:
    """Replace known vitamin synonyms (already lowercased) with canonical names."""
    return _VITAMIN_PATTERN.sub(lambda m: VITAMIN_SYNONYMS[m.group(0)], token)


def literal_key(fragment: str) -> str:
    """
    Lowercased fragment with only notes and list punctuation removed.
    Catalog names that carry a number ("red dye 3") are looked up with this
    key before quantities are stripped.
    """
    if not fragment:
        return ''
    s = _PAREN_PATTERN.sub('', fragment.lower())
    s = re.sub(r'\s+', ' ', s).strip(' .:*')
    return s


def normalize_token(fragment: str) -> str:
    """
    Normalize one ingredient fragment into a lookup key.

    "Organic Sugar"            → "sugar"
    "Red Dye 40 (FD&C)"        → "red dye"   (trailing number is a quantity)
    "Salt 2%"                  → "salt"
    "Ascorbic Acid (Vitamin C)"→ "vitamin c"

    Returns '' when nothing identifying is left.
    """
    if not fragment:
        return ''

    s = fragment.lower().strip()
    s = _PAREN_PATTERN.sub('', s)
    s = _TRAILING_QTY_PATTERN.sub('', s)
    s = _AMOUNT_UNIT_PATTERN.sub(' ', s)
    s = _DESCRIPTOR_PATTERN.sub(' ', s)
    s = re.sub(r'\s+', ' ', s).strip()
    s = fold_vitamin_synonyms(s)

    # Leftover list punctuation: "sugar." / "* salt" / "and water"
    s = s.strip(' .:*')
    s = re.sub(r'^(?:and|or)\s+', '', s)
    s = re.sub(r'\s+', ' ', s).strip()
    return s


def normalize_ingredients(raw_text: Any) -> list[NormalizedToken]:
    """
    Main entry point: raw ingredient list → ordered (raw, normalized) tokens.
    Fragments that normalize to nothing (e.g. a lone "Organic") are dropped.
    """
    tokens = []
    for fragment in split_fragments(raw_text):
        normalized = normalize_token(fragment)
        if normalized:
            tokens.append(NormalizedToken(raw=fragment, normalized=normalized, literal=literal_key(fragment)))
    return tokens


def normalize_text(raw_text: Any) -> list[str]:
    """Normalized lookup keys only (duplicates retained)."""
    return [t.normalized for t in normalize_ingredients(raw_text)]
