from __future__ import annotations

import re
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from src.models.sales_contribution import CategoryRecord, MainCategoryRecord

UNCATEGORIZED = "Uncategorized"
GENERAL_BUCKET = "General"

SUBSTRING_MIN_SLACK = 3
SUBSTRING_MAX_LENGTH_RATIO = 0.5
WORD_MATCH_RATIO = 0.6
CHAR_OVERLAP_THRESHOLD = 0.7

_PUNCTUATION = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")
_SEPARATORS = re.compile(r"[\s_-]")
_WORD_SPLIT = re.compile(r"[\s_-]+")

CategoryLookup = Dict[str, CategoryRecord]


def normalize_category_text(text: str) -> str:
    cleaned = _PUNCTUATION.sub("", text.strip().lower())
    return _WHITESPACE.sub(" ", cleaned).strip()


def _compact(text: str) -> str:
    return _SEPARATORS.sub("", text)


def _words(text: str) -> List[str]:
    return [word for word in _WORD_SPLIT.split(text) if word]


def _words_overlap(value_word: str, key_word: str) -> bool:
    # Equality and prefixes are special cases of containment.
    return value_word in key_word or key_word in value_word


def _char_overlap(value: str, key: str) -> float:
    shorter, longer = (value, key) if len(value) < len(key) else (key, value)
    matches = sum(1 for char in shorter if char in longer)
    return matches / max(len(shorter), 1)


def find_best_category_match(value: Optional[str], lookup: Mapping[str, CategoryRecord]) -> Optional[CategoryRecord]:
    """Match free text against the category lookup, relaxing step by step.

    Each step only runs when every stricter step failed. Scans walk the lookup in
    insertion order, so the first qualifying key wins.
    """
    if not value or not isinstance(value, str) or not value.strip():
        return None

    trimmed = value.strip()
    normalized = normalize_category_text(trimmed)

    for key in (normalized, trimmed.lower()):
        if key in lookup:
            return lookup[key]

    if "(" in trimmed:
        prefix = trimmed.split("(", 1)[0].strip().lower()
        for key in (prefix, normalize_category_text(prefix)):
            if key in lookup:
                return lookup[key]

    compact_value = _compact(normalized)
    normalized_keys = [(key, normalize_category_text(key), category) for key, category in lookup.items()]

    for _, normalized_key, category in normalized_keys:
        if _compact(normalized_key) == compact_value:
            return category

    for key, _, category in normalized_keys:
        if _compact(key.split("(", 1)[0].strip().lower()) == compact_value:
            return category

    for _, normalized_key, category in normalized_keys:
        compact_key = _compact(normalized_key)
        if compact_key in compact_value or compact_value in compact_key:
            length_diff = abs(len(compact_key) - len(compact_value))
            min_length = min(len(compact_key), len(compact_value))
            if length_diff <= max(SUBSTRING_MIN_SLACK, min_length * SUBSTRING_MAX_LENGTH_RATIO):
                return category

    value_words = _words(normalized)
    if value_words:
        for _, normalized_key, category in normalized_keys:
            key_words = _words(normalized_key)
            if not key_words:
                continue
            matching = [
                word for word in key_words if any(_words_overlap(vw, word) for vw in value_words)
            ]
            ratio = len(matching) / min(len(key_words), len(value_words))
            if matching and ratio >= WORD_MATCH_RATIO:
                return category

    best: Optional[CategoryRecord] = None
    best_score = 0.0
    for _, normalized_key, category in normalized_keys:
        score = _char_overlap(normalized, normalized_key)
        if score >= CHAR_OVERLAP_THRESHOLD and (best is None or score > best_score):
            best, best_score = category, score
    return best


def build_category_lookup(
    categories: Sequence[CategoryRecord],
    main_categories: Iterable[MainCategoryRecord],
) -> CategoryLookup:
    lookup: CategoryLookup = {}
    for category in categories:
        if not category.name:
            continue
        lookup[category.name.strip().lower()] = category
        main = category.main_category
        if main and main.name:
            lookup.setdefault(main.name.strip().lower(), category)

    for main in main_categories:
        if not main.name:
            continue
        key = main.name.strip().lower()
        member = next(
            (
                category
                for category in categories
                if category.main_category is not None and category.main_category.id == main.id
            ),
            None,
        )
        if member is not None:
            lookup.setdefault(key, member)
        else:
            lookup[key] = CategoryRecord(
                id=None, name=main.name, parent_id=main.id, main_category=main
            )
    return lookup


def resolve_main_category(
    text: Optional[str],
    category_id: Optional[int],
    joined: Optional[CategoryRecord],
    categories_by_id: Mapping[int, CategoryRecord],
    lookup: Mapping[str, CategoryRecord],
) -> str:
    resolved: Optional[CategoryRecord] = None
    if joined is not None and joined.main_category is not None:
        resolved = joined
    if resolved is None and category_id is not None:
        resolved = categories_by_id.get(category_id)
    if resolved is None and text and lookup:
        resolved = find_best_category_match(text, lookup)
    if resolved is None and joined is not None:
        resolved = joined
    if resolved is None or resolved.main_category is None:
        return UNCATEGORIZED
    return resolved.main_category.name or UNCATEGORIZED


def field_bucket(main_category: str, separate_categories: Iterable[str]) -> str:
    return main_category if main_category in set(separate_categories) else GENERAL_BUCKET
