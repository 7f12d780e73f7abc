import pytest

from zim_lexicon.config import ExtractionConfig
from zim_lexicon.extraction import ExtractionEngine, Matchers, score_definition, score_relation_term


def _engine(**overrides):
    return ExtractionEngine(ExtractionConfig(**overrides))


def test_two_items_in_one_language_section():
    html = "<h2>English</h2><ol><li>A small domesticated feline.</li><li>To move quickly on foot.</li></ol>"
    result = _engine(min_definition_chars=5).extract("cat", html)

    assert [d.text for d in result.definitions] == ["A small domesticated feline.", "To move quickly on foot."]
    assert [d.order_in_language for d in result.definitions] == [0, 1]
    assert {d.language for d in result.definitions} == {"English"}
    assert result.relations == []


def test_relation_section_yields_split_terms_and_no_definitions():
    html = "<h2>English</h2><h3>Synonyms</h3><ul><li>alpha, beta; gamma</li></ul>"
    result = _engine(min_definition_chars=1).extract("word", html)

    assert result.definitions == []
    assert [r.target_term for r in result.relations] == ["alpha", "beta", "gamma"]
    assert [r.order_in_type for r in result.relations] == [0, 1, 2]
    assert {r.relation_type for r in result.relations} == {"synonyms"}
    assert {r.source_text for r in result.relations} == {"alpha, beta; gamma"}


def test_full_page(dog_html):
    result = _engine().extract("Dog", dog_html)

    by_language = {}
    for d in result.definitions:
        by_language.setdefault(d.language, []).append(d.order_in_language)
    assert by_language == {"English": [0, 1], "French": [0]}
    assert result.definitions[0].text == "A domesticated carnivorous mammal kept as a pet."

    assert [(r.language, r.target_term) for r in result.relations] == [
        ("English", "hound"),
        ("English", "pooch"),
        ("English", "canine"),
    ]
    assert [a.alias for a in result.aliases] == ["Dog", "dog"]
    assert {a.language for a in result.aliases} == {"English"}
    assert {a.source for a in result.aliases} == {"title"}
    assert result.extraction_confidence == pytest.approx(0.85)

    assert "domesticated carnivorous" in result.plain_text
    assert "[1]" not in result.plain_text
    assert "edit" not in result.plain_text


def test_extraction_is_deterministic(dog_html):
    engine = _engine()
    assert engine.extract("Dog", dog_html) == engine.extract("Dog", dog_html)


def test_scores_stay_in_unit_interval(dog_html, cat_html):
    engine = _engine(confidence_threshold=0.0, min_definition_chars=1)
    for title, html in (("Dog", dog_html), ("cat", cat_html)):
        result = engine.extract(title, html)
        for item in result.definitions + result.relations:
            assert 0.0 <= item.confidence <= 1.0
        assert 0.0 <= result.extraction_confidence <= 1.0


def test_language_allowlist(dog_html):
    result = _engine(language_allowlist=["french"]).extract("Dog", dog_html)
    assert {d.language for d in result.definitions} == {"French"}
    assert result.relations == []
    assert {a.language for a in result.aliases} == {"French"}


def test_per_language_and_per_type_caps(dog_html):
    result = _engine(max_definitions_per_language=1, max_relations_per_type=2).extract("Dog", dog_html)
    assert [(d.language, d.order_in_language) for d in result.definitions] == [("English", 0), ("French", 0)]
    assert [r.target_term for r in result.relations] == ["hound", "pooch"]


def test_confidence_threshold_drops_everything(dog_html):
    result = _engine(confidence_threshold=0.95).extract("Dog", dog_html)
    assert result.definitions == []
    assert result.relations == []
    assert result.extraction_confidence == 0.0


def test_relations_disabled_still_excludes_relation_items(dog_html):
    result = _engine(parse_relations=False).extract("Dog", dog_html)
    assert result.relations == []
    assert len(result.definitions) == 3


def test_language_sections_disabled(dog_html):
    result = _engine(parse_language_sections=False).extract("Dog", dog_html)
    assert result.definitions == []
    assert result.relations == []
    assert result.plain_text
    assert {a.language for a in result.aliases} == {None}


def test_plain_text_can_be_skipped(dog_html):
    assert _engine(store_plain_text=False).extract("Dog", dog_html).plain_text is None


def test_language_normalizer_applies_to_definitions(dog_html):
    result = _engine(language_normalizers={"English": "english_basic"}).extract("Dog", dog_html)
    english = [d for d in result.definitions if d.language == "English"]
    french = [d for d in result.definitions if d.language == "French"]
    assert english[0].normalized_text == "domesticated carnivorous mammal kept as a pet."
    assert english[0].confidence == pytest.approx(1.0)
    assert french[0].normalized_text == french[0].text


def test_malformed_markup_does_not_raise():
    result = _engine().extract("x", "<h2>English<ol><li>unterminated <b>bold")
    assert result.definitions == []
    assert result.relations == []


def test_split_terms_trims_brackets_quotes_and_duplicates():
    engine = _engine()
    assert engine.split_terms("(informal) pooch, hound [archaic]; hound / “canine”") == ["pooch", "hound", "canine"]
    assert engine.split_terms("x, (y)") == []
    assert engine.split_terms("(informal), pooch, [archaic]; \"(dated)\"") == ["pooch"]
    assert engine.split_terms("(a) (b), ((nested))") == []


def test_title_aliases():
    engine = _engine(language_normalizers={"French": "romance_basic"})
    aliases = engine.title_aliases("Café", "French")
    assert [a.alias for a in aliases] == ["Café", "café", "Cafe"]
    assert {a.normalized_alias for a in aliases} == {"cafe"}
    assert engine.title_aliases("a", None) == []
    assert _engine(include_title_as_alias=False).extract("Dog", "<p>x</p>").aliases == []


def test_cyrillic_title_and_relations_are_transliterated():
    html = (
        "<h2>Russian</h2><h3>Noun</h3><ol><li>домашнее животное семейства кошачьих</li></ol>"
        "<h4>Synonyms</h4><ul><li>котик, киса</li></ul>"
    )
    result = _engine().extract("кошка", html)

    assert [(a.alias, a.normalized_alias) for a in result.aliases] == [("кошка", "koshka"), ("koshka", "koshka")]
    assert {a.language for a in result.aliases} == {"Russian"}
    assert [(r.target_term, r.normalized_target) for r in result.relations] == [("котик", "kotik"), ("киса", "kisa")]
    assert len(result.definitions) == 1


def test_cjk_title_and_relations_are_transliterated():
    html = "<h2>Japanese</h2><h4>Synonyms</h4><ul><li>ねこ, ネコ</li></ul>"
    result = _engine().extract("猫", html)

    assert [(a.alias, a.normalized_alias) for a in result.aliases] == [("Mao", "mao")]
    assert [(r.target_term, r.normalized_target) for r in result.relations] == [("ねこ", "neko"), ("ネコ", "neko")]


def test_sibling_sub_sense_list_respects_depth_limit():
    html = (
        "<h2>English</h2><ol><li>A domesticated carnivorous mammal kept as a pet.</li>"
        "<ol><li>A dog bred and trained for hunting game animals.</li></ol></ol>"
    )
    shallow = _engine(nested_list_depth_limit=1).extract("dog", html)
    assert [d.text for d in shallow.definitions] == ["A domesticated carnivorous mammal kept as a pet."]

    deep = _engine(nested_list_depth_limit=2).extract("dog", html)
    assert [d.order_in_language for d in deep.definitions] == [0, 1]


def test_definition_score_penalizes_relation_labels():
    matchers = Matchers.build(["synonyms"])
    plain = score_definition("Words that mean the same", "Words that mean the same", matchers)
    labelled = score_definition("Synonyms: words that mean the same", "Synonyms: words that mean the same", matchers)
    assert labelled < plain
    assert score_definition("", "", matchers) == pytest.approx(0.2)
    assert 0.0 <= score_definition(" ".join(["word"] * 80), "", matchers) <= 1.0


def test_relation_term_score():
    assert score_relation_term("hound", "hound") == pytest.approx(0.8)
    assert score_relation_term("Hound", "hound") == pytest.approx(0.9)
    assert score_relation_term("42", "42") == pytest.approx(0.6)
