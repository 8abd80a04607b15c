import pytest

from app.utils.slug import slugify, unique_slug


# --- slugify ---

@pytest.mark.parametrize(
    "text, expected",
    [
        ("", "untitled"),
        ("Hello, World!", "hello-world"),
        ("  --Multi   Space--  ", "multi-space"),
        ("Contract Law Basics", "contract-law-basics"),
        ("Tabs\tand\nnewlines", "tabs-and-newlines"),
        ("under_score & ampersand", "underscore-ampersand"),
        ("Café Société", "cafe-societe"),
        ("2024: A Year in Review", "2024-a-year-in-review"),
    ],
)
def test_slugify_examples(text, expected):
    assert slugify(text) == expected


@pytest.mark.parametrize("text", [None, "!!!", "---", "   ", "¿?¡!", "日本語"])
def test_slugify_falls_back_to_untitled(text):
    """Input with nothing usable left maps to the fallback"""
    assert slugify(text) == "untitled"


@pytest.mark.parametrize("value", [42, 3.5, ["a", "b"], object()])
def test_slugify_never_raises_on_non_strings(value):
    result = slugify(value)
    assert result
    assert set(result) <= set("abcdefghijklmnopqrstuvwxyz0123456789-")


@pytest.mark.parametrize(
    "text",
    ["Hello, World!", "  --Multi   Space--  ", "a -- b", "Employment Law: What's New?", ""],
)
def test_slugify_is_idempotent(text):
    once = slugify(text)
    assert slugify(once) == once


def test_slugify_is_deterministic():
    assert slugify("Data Protection Act") == slugify("Data Protection Act")


# --- unique_slug ---

def test_unique_slug_keeps_free_slug():
    assert unique_slug("tax-update", ["other"]) == "tax-update"


def test_unique_slug_suffixes_from_two():
    assert unique_slug("tax-update", ["tax-update"]) == "tax-update-2"
    assert unique_slug("tax-update", ["tax-update", "tax-update-2"]) == "tax-update-3"


def test_unique_slug_accepts_generators():
    taken = (s for s in ["a", "a-2"])
    assert unique_slug("a", taken) == "a-3"
