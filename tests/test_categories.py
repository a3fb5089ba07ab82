from __future__ import annotations

from src.analytics.categories import (
    GENERAL_BUCKET,
    UNCATEGORIZED,
    build_category_lookup,
    field_bucket,
    find_best_category_match,
    normalize_category_text,
    resolve_main_category,
)
from src.models.sales_contribution import CategoryRecord, MainCategoryRecord

GERMANY = MainCategoryRecord(id=3, name="Germany")
IMMIGRATION = MainCategoryRecord(id=1, name="Immigration Israel")
SMALL = MainCategoryRecord(id=2, name="Small without meetin")

GERMAN_CITIZENSHIP = CategoryRecord(id=10, name="German Citizenship", parent_id=3, main_category=GERMANY)


def _lookup():
    return build_category_lookup([GERMAN_CITIZENSHIP], [GERMANY, IMMIGRATION, SMALL])


def test_normalize_category_text() -> None:
    assert normalize_category_text("  Commer/Civil   Adm!  ") == "commercivil adm"


def test_exact_match_on_normalized_text() -> None:
    match = find_best_category_match("german citizenship!", _lookup())
    assert match is GERMAN_CITIZENSHIP


def test_parenthesis_prefix_match() -> None:
    match = find_best_category_match("German Citizenship (Paragraph 116)", _lookup())
    assert match is GERMAN_CITIZENSHIP


def test_truncated_main_category_matches_full_text() -> None:
    lookup = _lookup()
    stored = find_best_category_match("Small without meetin", lookup)
    full = find_best_category_match("Small Without Meeting", lookup)
    assert stored is not None
    assert stored.main_category.name == "Small without meetin"
    assert full is stored


def test_word_overlap_match() -> None:
    austria = MainCategoryRecord(id=7, name="Austria")
    category = CategoryRecord(id=70, name="Austrian Citizenship", main_category=austria)
    lookup = build_category_lookup([category], [austria])
    assert find_best_category_match("Austria Citizenship Appeal", lookup) is category


def test_reordered_words_resolve_by_word_overlap() -> None:
    austria = MainCategoryRecord(id=7, name="Austria")
    category = CategoryRecord(id=70, name="Austrian Citizenship", main_category=austria)
    lookup = build_category_lookup([category], [austria])
    # Compacted text is neither equal to nor contained in any key.
    assert find_best_category_match("Citizenship Austrian", lookup) is category


def test_no_match_for_unrelated_or_empty_text() -> None:
    lookup = _lookup()
    assert find_best_category_match("zzzz", lookup) is None
    assert find_best_category_match("   ", lookup) is None
    assert find_best_category_match(None, lookup) is None


def test_main_category_without_members_gets_synthetic_entry() -> None:
    lookup = _lookup()
    entry = lookup["immigration israel"]
    assert entry.id is None
    assert entry.main_category == IMMIGRATION
    assert lookup["germany"] is GERMAN_CITIZENSHIP


def test_resolve_prefers_joined_category_with_main() -> None:
    lookup = _lookup()
    joined = CategoryRecord(id=11, name="Tourist Visa", main_category=IMMIGRATION)
    resolved = resolve_main_category("German Citizenship", 10, joined, {10: GERMAN_CITIZENSHIP}, lookup)
    assert resolved == "Immigration Israel"


def test_resolve_falls_back_to_id_then_text() -> None:
    lookup = _lookup()
    by_id = {10: GERMAN_CITIZENSHIP}
    joined_without_main = CategoryRecord(id=12, name="Orphan")
    assert resolve_main_category(None, 10, joined_without_main, by_id, lookup) == "Germany"
    assert resolve_main_category("Small Without Meeting", None, None, by_id, lookup) == "Small without meetin"
    assert resolve_main_category("zzzz", None, joined_without_main, by_id, lookup) == UNCATEGORIZED
    assert resolve_main_category(None, None, None, by_id, lookup) == UNCATEGORIZED


def test_field_bucket_folds_unlisted_categories() -> None:
    separate = ("Germany", "USA")
    assert field_bucket("Germany", separate) == "Germany"
    assert field_bucket("Tax", separate) == GENERAL_BUCKET
