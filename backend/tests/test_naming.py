"""Tests for the campaign name uniqueness resolver."""

from app.services import naming


def test_desired_name_returned_when_free():
    assert naming.resolve("Spring Sale", {"summer sale"}) == "Spring Sale"


def test_comparison_is_case_insensitive():
    assert naming.resolve("spring SALE", {"Spring Sale"}, seed_prompt=None) is None


def test_taken_name_without_prompt_has_no_alternative():
    assert naming.resolve("Spring Sale", {"spring sale"}) is None


def test_taken_name_resolved_from_prompt():
    name = naming.resolve("Spring Sale", {"spring sale"}, "Spring sale on patio furniture")
    assert name == "Spring Sale Patio Campaign"


def test_alternatives_never_use_numeric_suffixes():
    candidates = naming.generate_name_candidates("Grand opening for our bakery downtown")
    assert candidates
    for candidate in candidates:
        assert not candidate.rstrip(")").split()[-1].isdigit()
        assert "(" not in candidate


def test_skips_taken_alternatives():
    taken = {"spring sale", "spring sale patio campaign", "spring sale patio promo"}
    name = naming.resolve("Spring Sale", taken, "Spring sale on patio furniture")
    assert name == "Spring Sale Patio Spotlight"


def test_prompt_without_content_words_yields_nothing():
    assert naming.generate_name_candidates("we want to run an ad for you") == []
    assert naming.resolve("Promo", {"promo"}, "please help me") is None


def test_extract_keywords_dedupes_and_limits():
    assert naming.extract_keywords("pizza Pizza PIZZA delivery late night specials") == [
        "Pizza", "Delivery", "Late",
    ]


def test_pick_unique_returns_none_when_all_taken():
    assert naming.pick_unique(["A Promo", "B Promo"], {"a promo", "b promo"}) is None
