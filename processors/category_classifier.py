"""
Keyword-based event categorisation.

Each category from ``config.yml`` contributes a score built from keyword hits:

* exact (word-boundary) hit = 1, substring-only hit = 0.5
* hits in the title weigh 2x, hits in the description 1x
* keywords longer than 5 characters weigh 1.5x

The category total is scaled by ``(10 - priority) / 10`` and the best one
wins; equal scores go to the lower priority number.
"""

from __future__ import annotations

import hashlib
import logging
import re
from collections import OrderedDict
from functools import lru_cache
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from core.config import CategoryConfig
from core.models import ClassificationResult

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = "outros"

TAG_VOCABULARY = [
    # genres
    "rock", "pop", "sertanejo", "funk", "rap", "eletrônica", "jazz", "blues", "reggae",
    "forró", "pagode", "samba", "mpb", "gospel", "country", "indie", "metal", "punk",
    "bossa nova",
    # event types
    "festival", "show", "concert", "turnê", "apresentação", "espetáculo", "peça", "musical",
    "stand-up", "palestra", "workshop", "curso", "competição", "campeonato", "torneio",
    "corrida", "maratona",
    # audience
    "infantil", "família", "adulto", "jovem", "terceira idade", "profissional", "estudante",
    "empresarial",
    # format
    "presencial", "online", "híbrido", "ao vivo", "gravado", "interativo", "imersivo", "virtual",
]

PATTERN_TAGS: List[Tuple[str, Tuple[str, ...]]] = [
    ("gratuito", ("grátis", "gratis", "gratuito", "free", "entrada franca")),
    ("premium", ("vip", "premium")),
    ("nacional", ("nacional", "brasil")),
    ("internacional", ("internacional", "mundial", "world tour")),
    ("ao-ar-livre", ("ao ar livre", "outdoor", "open air")),
]


@lru_cache(maxsize=1024)
def _word_pattern(keyword: str) -> "re.Pattern[str]":
    return re.compile(rf"(?<!\w){re.escape(keyword)}(?!\w)")


def count_keyword_matches(text: str, keyword: str) -> float:
    """Exact word hits count 1, hits inside longer words count 0.5."""
    if not text or not keyword:
        return 0.0
    exact = len(_word_pattern(keyword).findall(text))
    if len(keyword) <= 3:
        # 'ia', 'rap', 'dev' inside other words are noise
        return float(exact)
    partial = text.count(keyword) - exact
    return exact + max(partial, 0) * 0.5


def _contains_word(text: str, phrase: str) -> bool:
    return _word_pattern(phrase).search(text) is not None


class CategoryClassifier:
    """Memoised keyword classifier over the configured category table."""

    def __init__(
        self,
        categories: Mapping[str, Union[CategoryConfig, Mapping[str, Any]]],
        *,
        min_confidence: float = 0.2,
        cache_size: int = 5000,
    ) -> None:
        self.categories: Dict[str, CategoryConfig] = {}
        self.min_confidence = min_confidence
        self.cache_size = cache_size
        self._cache: "OrderedDict[str, ClassificationResult]" = OrderedDict()
        self.import_category_config(categories)
        self.reset_stats()

    # ---------------------------------------------- #
    @staticmethod
    def _cache_key(title: str, description: str) -> str:
        return hashlib.sha1(f"{title}\x00{description}".encode("utf-8")).hexdigest()

    def score_categories(self, title: str, description: str = "") -> Dict[str, float]:
        """Priority-adjusted score per category (only categories with hits)."""
        title_l = (title or "").lower()
        desc_l = (description or "").lower()
        scores: Dict[str, float] = {}
        for key, category in self.categories.items():
            total = 0.0
            for keyword in category.keywords:
                kw = keyword.lower()
                hits = count_keyword_matches(title_l, kw) * 2 + count_keyword_matches(desc_l, kw)
                if hits <= 0:
                    continue
                if len(kw) > 5:
                    hits *= 1.5
                total += hits
            if total > 0:
                scores[key] = total * (10 - min(category.priority, 9)) / 10
        return scores

    def _matched_keywords(self, category: str, title: str, description: str) -> List[str]:
        text = f"{title} {description}".lower()
        return [kw for kw in self.categories[category].keywords if kw.lower() in text]

    def classify_event(self, title: Optional[str], description: Optional[str] = "") -> ClassificationResult:
        title = (title or "").strip()
        description = (description or "").strip()
        key = self._cache_key(title.lower(), description.lower())
        cached = self._cache.get(key)
        if cached is not None:
            self._cache.move_to_end(key)
            self.cache_hits += 1
            return cached

        self.total_classifications += 1
        result = self._classify(title, description)
        self._cache[key] = result
        if len(self._cache) > self.cache_size:
            # least recently used first
            self._cache.popitem(last=False)
        self.category_distribution[result.category] = self.category_distribution.get(result.category, 0) + 1
        logger.debug(f"Classified {title!r} as {result.category} (confidence {result.confidence})")
        return result

    def _classify(self, title: str, description: str) -> ClassificationResult:
        tags = self.extract_tags(f"{title} {description}")
        scores = self.score_categories(title, description)
        if not scores:
            return ClassificationResult(category=DEFAULT_CATEGORY, confidence=0.1, tags=tags)

        ranked = sorted(
            scores.items(),
            key=lambda item: (-item[1], self.categories[item[0]].priority),
        )
        best, best_score = ranked[0]
        total = sum(scores.values())
        # weak evidence stays below 1.0 even without competing categories
        confidence = round(min(best_score / max(total, 1.0), 1.0), 2)

        if confidence < self.min_confidence:
            return ClassificationResult(category=DEFAULT_CATEGORY, confidence=0.1, tags=tags)

        alternatives = [
            {"category": cat, "confidence": round(score / max(total, 1.0), 2)}
            for cat, score in ranked[1:3]
            if score >= best_score * 0.3
        ]
        return ClassificationResult(
            category=best,
            confidence=confidence,
            matched_keywords=self._matched_keywords(best, title, description),
            alternative_categories=alternatives,
            tags=tags,
        )

    @staticmethod
    def extract_tags(text: str) -> frozenset:
        lowered = (text or "").lower()
        tags = {tag for tag in TAG_VOCABULARY if _contains_word(lowered, tag)}
        for tag, triggers in PATTERN_TAGS:
            if any(_contains_word(lowered, trigger) for trigger in triggers):
                tags.add(tag)
        return frozenset(tags)

    def classify_events(self, events: Iterable[Mapping[str, Any]]) -> List[Dict[str, Any]]:
        """Annotate plain dicts with ``category``/``category_confidence``/``tags``."""
        annotated = []
        for event in events:
            result = self.classify_event(event.get("title"), event.get("description"))
            annotated.append(
                {
                    **event,
                    "category": result.category,
                    "category_confidence": result.confidence,
                    "alternative_categories": result.alternative_categories,
                    "tags": sorted(result.tags),
                }
            )
        return annotated

    # ---------------------------------------------- #
    # Category table
    def is_valid_category(self, category: str) -> bool:
        return category in self.categories

    def get_category_info(self, category: str) -> Optional[CategoryConfig]:
        return self.categories.get(category)

    def get_available_categories(self) -> List[str]:
        return list(self.categories)

    def import_category_config(
        self, categories: Mapping[str, Union[CategoryConfig, Mapping[str, Any]]]
    ) -> None:
        """Merge categories into the table; clears the memo cache."""
        for key, value in categories.items():
            self.categories[key] = (
                value if isinstance(value, CategoryConfig) else CategoryConfig.model_validate(value)
            )
        self.categories.setdefault(
            DEFAULT_CATEGORY, CategoryConfig(name="Outros Eventos", priority=99)
        )
        self._cache.clear()

    # ---------------------------------------------- #
    # Stats
    def get_stats(self) -> Dict[str, Any]:
        lookups = self.total_classifications + self.cache_hits
        return {
            "total_classifications": self.total_classifications,
            "cache_hits": self.cache_hits,
            "cache_size": len(self._cache),
            "cache_efficiency": round(self.cache_hits / lookups * 100) if lookups else 0,
            "category_distribution": dict(self.category_distribution),
        }

    def reset_stats(self) -> None:
        self.total_classifications = 0
        self.cache_hits = 0
        self.category_distribution: Dict[str, int] = {}

    def reset(self) -> None:
        self._cache.clear()
        self.reset_stats()
        logger.info("Category classifier reset")
