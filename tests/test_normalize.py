from product_match.normalize import (
    basic_clean,
    contains_either,
    fraction_matched,
    stem,
    stem_label,
    stem_match,
    tokenize,
)


def test_basic_clean_trims_whitespace_and_html():
    raw = "   <div>Sofá   de <b>veludo</b></div>\n"
    assert basic_clean(raw) == "Sofá de veludo"


def test_basic_clean_handles_none_and_numbers():
    assert basic_clean(None) == ""
    assert basic_clean(42) == "42"


def test_tokenize_splits_punctuation_and_drops_short_tokens():
    tokens = tokenize("Sofá de 3 lugares, veludo-cinza!")
    assert tokens == ["sofá", "lugares", "veludo", "cinza"]


def test_tokenize_empty():
    assert tokenize("") == []
    assert tokenize(None) == []


def test_stem_plural_rules():
    assert stem("shelves") == "shelf"
    assert stem("bodies") == "body"
    assert stem("benches") == "bench"
    assert stem("dishes") == "dish"
    assert stem("boxes") == "box"
    assert stem("glasses") == "glass"
    assert stem("tomatoes") == "tomato"
    assert stem("chairs") == "chair"
    # not a plural
    assert stem("glass") == "glass"


def test_stem_label_stems_each_word():
    assert stem_label("  Salas  de Estar ") == "sala de estar"


def test_stem_match_case_unicode_and_plural():
    assert stem_match("Chairs", "chair")
    assert stem_match("Mesas", "mesa")
    # full-width letters fold under NFKC
    assert stem_match("Ｍｅｓａ", "mesa")
    assert not stem_match("Mesa", "Cadeira")


def test_stem_match_empty_never_matches():
    assert not stem_match("", "")
    assert not stem_match(None, "mesa")
    assert not stem_match("   ", "   ")


def test_stem_match_is_symmetric():
    labels = ["Chairs", "chair", "Sofás", "sofá", "Mesa de Centro", "mesas de centro", "Benches", ""]
    for a in labels:
        for b in labels:
            assert stem_match(a, b) == stem_match(b, a)


def test_contains_either():
    assert contains_either("Mesa", "Mesa de Centro")
    assert contains_either("mesa de centro", "MESA")
    assert not contains_either("", "Mesa")


def test_fraction_matched_substring_either_direction():
    content = ["sofá", "veludo", "cinzas"]
    assert fraction_matched(["veludo", "cinza"], content) == 1.0
    assert fraction_matched(["veludo", "couro"], content) == 0.5
    assert fraction_matched([], content) == 0.0
