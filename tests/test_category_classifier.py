from __future__ import annotations

import pytest

from processors.category_classifier import CategoryClassifier, count_keyword_matches


@pytest.fixture
def classifier(settings) -> CategoryClassifier:
    return CategoryClassifier(settings.categories)


def test_rock_show_is_a_show(classifier) -> None:
    result = classifier.classify_event("Show de Rock", "")

    assert result.category == "shows"
    assert result.confidence == 1.0
    assert set(result.matched_keywords) >= {"show", "rock"}


def test_theatre_play(classifier) -> None:
    result = classifier.classify_event("Peça de teatro: O Auto da Compadecida", "Espetáculo com elenco local")

    assert result.category == "teatro"


def test_title_hits_weigh_more_than_description() -> None:
    classifier = CategoryClassifier({"a": {"name": "A", "priority": 1, "keywords": ["rock"]}})

    in_title = classifier.score_categories("noite de rock", "")["a"]
    in_description = classifier.score_categories("noite", "noite de rock")["a"]

    assert in_title == pytest.approx(2 * in_description)


def test_long_keywords_weigh_more() -> None:
    classifier = CategoryClassifier(
        {
            "short": {"name": "S", "priority": 1, "keywords": ["samba"]},
            "long": {"name": "L", "priority": 1, "keywords": ["sertanejo"]},
        }
    )

    scores = classifier.score_categories("samba e sertanejo", "")

    assert scores["long"] == pytest.approx(scores["short"] * 1.5)


def test_priority_breaks_equal_keyword_hits() -> None:
    classifier = CategoryClassifier(
        {
            "feira": {"name": "Feira", "priority": 5, "keywords": ["feira"]},
            "negocios": {"name": "Negócios", "priority": 2, "keywords": ["feira"]},
        }
    )

    assert classifier.classify_event("Feira do livro").category == "negocios"


def test_no_keyword_falls_back_to_outros(classifier) -> None:
    result = classifier.classify_event("Xyzzy plugh", "")

    assert result.category == "outros"
    assert result.confidence == 0.1
    assert result.matched_keywords == []


def test_keyword_matching_rules() -> None:
    assert count_keyword_matches("show de rock", "rock") == 1
    assert count_keyword_matches("rockabilly night", "rock") == 0.5
    # keywords of three letters or fewer only count as whole words
    assert count_keyword_matches("trapézio", "rap") == 0
    assert count_keyword_matches("rap nacional", "rap") == 1
    assert count_keyword_matches("", "rock") == 0


def test_tags(classifier) -> None:
    result = classifier.classify_event("Festival de rock gratuito ao ar livre", "")

    assert {"rock", "festival", "gratuito", "ao-ar-livre"} <= result.tags


def test_results_are_memoised(classifier) -> None:
    first = classifier.classify_event("Show de Rock", "")
    second = classifier.classify_event("  show de rock ", "")

    assert second is first
    stats = classifier.get_stats()
    assert stats["cache_hits"] == 1
    assert stats["total_classifications"] == 1
    assert stats["category_distribution"] == {"shows": 1}


def test_import_category_config_keeps_outros_and_clears_cache(classifier) -> None:
    classifier.classify_event("Show de Rock", "")

    classifier.import_category_config({"games": {"name": "Games", "priority": 1, "keywords": ["e-sports"]}})

    assert classifier.is_valid_category("games")
    assert classifier.is_valid_category("outros")
    assert classifier.get_stats()["cache_size"] == 0
    assert classifier.classify_event("Campeonato de e-sports").category == "games"


def test_classify_events_annotates_dicts(classifier) -> None:
    annotated = classifier.classify_events([{"title": "Show de Rock", "description": "", "id": 7}])

    assert annotated[0]["id"] == 7
    assert annotated[0]["category"] == "shows"
    assert annotated[0]["tags"] == sorted(annotated[0]["tags"])


def test_weak_evidence_lowers_confidence() -> None:
    classifier = CategoryClassifier(
        {
            "musica": {"name": "Música", "priority": 1, "keywords": ["rock"]},
            "nicho": {"name": "Nicho", "priority": 9, "keywords": ["jazz"]},
            "outros": {"name": "Outros", "priority": 99, "keywords": []},
        }
    )

    single_hit = classifier.classify_event("Noite especial", "noite de rock")
    assert single_hit.category == "musica"
    assert single_hit.confidence == pytest.approx(0.9)

    # one hit on a low-priority category falls under the confidence floor
    below_floor = classifier.classify_event("Noite especial", "noite de jazz")
    assert below_floor.category == "outros"
    assert below_floor.confidence == 0.1


def test_cache_evicts_least_recently_used(settings) -> None:
    classifier = CategoryClassifier(settings.categories, cache_size=2)

    classifier.classify_event("Show de Rock")
    classifier.classify_event("Peça de teatro")
    classifier.classify_event("Show de Rock")
    classifier.classify_event("Curso de programação")

    assert classifier.get_stats()["cache_size"] == 2
    classifier.classify_event("Show de Rock")
    assert classifier.cache_hits == 2
    classifier.classify_event("Peça de teatro")
    assert classifier.cache_hits == 2
    assert classifier.total_classifications == 4
