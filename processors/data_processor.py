"""
Validation, normalisation, classification and de-duplication of raw listings.

``process_event_data`` never raises for data-quality problems: a bad record
comes back as ``ProcessingResult(success=False, errors=[...])`` with every
violation listed, not only the first.
"""

from __future__ import annotations

import hashlib
import logging
import re
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union
from urllib.parse import urljoin, urlparse

from pydantic import ValidationError

from core.config import RegionConfig, Settings, SourceConfig, ValidationConfig
from core.models import (
    BatchResult,
    DateRange,
    Image,
    Location,
    NormalizedEventRecord,
    Price,
    ProcessingResult,
    RawEventRecord,
)

from .category_classifier import CategoryClassifier
from .date_parser import BRT, DateParser

logger = logging.getLogger(__name__)

QUALITY_WEIGHTS = {
    "title": 0.30,
    "date": 0.20,
    "venue": 0.20,
    "image": 0.15,
    "description": 0.10,
    "url": 0.05,
}

BRAZILIAN_STATES = {
    "AC", "AL", "AP", "AM", "BA", "CE", "DF", "ES", "GO", "MA", "MT", "MS", "MG", "PA",
    "PB", "PR", "PE", "PI", "RJ", "RN", "RS", "RO", "RR", "SC", "SP", "SE", "TO",
}
STATE_NAMES = {
    "rondônia": "RO", "rondonia": "RO", "são paulo": "SP", "rio de janeiro": "RJ",
    "distrito federal": "DF", "minas gerais": "MG", "bahia": "BA", "paraná": "PR",
    "amazonas": "AM", "pará": "PA", "ceará": "CE", "pernambuco": "PE", "goiás": "GO",
    "rio grande do sul": "RS", "mato grosso": "MT", "acre": "AC",
}

FREE_WORDS = ("grátis", "gratis", "gratuito", "gratuita", "free", "entrada franca")

_LOCATION_SPLIT = re.compile(r"\s*[,|•]\s*|\s+-\s+")
_CITY_STATE = re.compile(r"^(.*?)\s*[/-]\s*([A-Za-z]{2})$")
_BRL_AMOUNT = re.compile(r"R\$\s*(\d{1,3}(?:\.\d{3})+(?:,\d{1,2})?|\d+(?:[.,]\d{1,2})?)")
_BARE_AMOUNT = re.compile(r"(?<![\d.,])(\d{1,3}(?:\.\d{3})*,\d{2})(?![\d,])")


def _parse_brl(amount: str) -> float:
    """``1.234,56`` / ``50,00`` / ``50`` -> float"""
    if "," in amount:
        amount = amount.replace(".", "").replace(",", ".")
    elif re.fullmatch(r"\d{1,3}(?:\.\d{3})+", amount):
        amount = amount.replace(".", "")
    return float(amount)


def compute_content_hash(title: str, date: Optional[datetime], venue: Optional[str]) -> str:
    """Stable fingerprint of normalised title + date + venue."""
    key = "|".join(
        [
            (title or "").strip().lower(),
            date.isoformat() if date else "",
            (venue or "").strip().lower(),
        ]
    )
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


def deduplicate(records: Iterable[NormalizedEventRecord]) -> Tuple[List[NormalizedEventRecord], int]:
    """Keep the first record per content hash and per (title, date); returns (unique, removed)."""
    seen_hashes = set()
    seen_keys = set()
    unique: List[NormalizedEventRecord] = []
    removed = 0
    for record in records:
        key = (record.title.lower(), record.date.isoformat() if record.date else None)
        if record.content_hash in seen_hashes or key in seen_keys:
            removed += 1
            continue
        seen_hashes.add(record.content_hash)
        seen_keys.add(key)
        unique.append(record)
    return unique, removed


class DataProcessor:
    """Turns :class:`RawEventRecord` into :class:`NormalizedEventRecord`."""

    def __init__(
        self,
        classifier: CategoryClassifier,
        *,
        validation: Optional[ValidationConfig] = None,
        sources: Optional[Mapping[str, SourceConfig]] = None,
        regions: Optional[RegionConfig] = None,
        date_parser: Optional[DateParser] = None,
    ) -> None:
        self.classifier = classifier
        self.validation = validation or ValidationConfig()
        self.sources: Dict[str, SourceConfig] = dict(sources or {})
        self.regions = regions or RegionConfig()
        self.date_parser = date_parser or DateParser()
        self.reset_stats()

    @classmethod
    def from_settings(cls, settings: Settings, date_parser: Optional[DateParser] = None) -> "DataProcessor":
        return cls(
            CategoryClassifier(settings.categories),
            validation=settings.validation,
            sources=settings.scrapers,
            regions=settings.regions,
            date_parser=date_parser,
        )

    # ---------------------------------------------- #
    # Field normalisers
    def normalize_title(self, title: Optional[str], max_length: Optional[int] = None) -> Optional[str]:
        if not title:
            return None
        cleaned = re.sub(r"\s+", " ", title).strip()
        limit = min(self.validation.title_max_length, max_length or self.validation.title_max_length)
        return cleaned[:limit].rstrip() or None

    def normalize_description(self, description: Optional[str]) -> Optional[str]:
        if not description:
            return None
        cleaned = re.sub(r"\s+", " ", description).strip()
        return cleaned[: self.validation.description_max_length] or None

    def _known_city(self, text: str) -> Optional[str]:
        lowered = text.lower()
        # longest first so 'Rio de Janeiro' is not shadowed by shorter names
        for city in sorted(self.regions.cities, key=len, reverse=True):
            if re.search(rf"(?<!\w){re.escape(city.lower())}(?!\w)", lowered):
                return city
        return None

    @staticmethod
    def _state_from_text(text: str) -> Optional[str]:
        lowered = text.lower()
        for name, code in sorted(STATE_NAMES.items(), key=lambda item: -len(item[0])):
            if re.search(rf"(?<!\w){re.escape(name)}(?!\w)", lowered):
                return code
        for token in re.findall(r"\b([A-Z]{2})\b", text):
            if token in BRAZILIAN_STATES:
                return token
        return None

    def normalize_location(self, text: Optional[str]) -> Optional[Location]:
        """Split ``venue, city, UF`` (or ``venue - city/UF``); otherwise keep the full text as venue."""
        if not text or not text.strip():
            return None
        full = re.sub(r"\s+", " ", text).strip()
        parts = [p for p in _LOCATION_SPLIT.split(full) if p]
        city: Optional[str] = None
        state: Optional[str] = None

        if len(parts) > 1:
            last = parts[-1]
            city_state = _CITY_STATE.match(last)
            if last.upper() in BRAZILIAN_STATES and len(last) == 2:
                state = last.upper()
                parts.pop()
            elif city_state and city_state.group(2).upper() in BRAZILIAN_STATES:
                city, state = city_state.group(1).strip() or None, city_state.group(2).upper()
                parts.pop()
            if city is None and len(parts) > 1:
                city = parts.pop()

        venue = parts[0] if parts else (city or full)
        address = ", ".join(parts[1:]) or None

        city = city or self._known_city(full)
        # the city table goes first: 'Ji-Paraná' is in RO, not PR
        if state is None and city is not None:
            state = self.regions.cities.get(city)
        state = state or self._state_from_text(full)

        return Location(venue=venue, address=address, city=city, state=state)

    @staticmethod
    def normalize_image_url(url: Optional[str], base_url: Optional[str] = None) -> Optional[str]:
        if not url or url.startswith("data:"):
            return None
        url = url.strip()
        if url.startswith("//"):
            url = "https:" + url
        elif base_url and not urlparse(url).scheme:
            url = urljoin(base_url, url)
        if url.startswith("http://"):
            url = "https://" + url[len("http://"):]
        return url if url.startswith("https://") else None

    @staticmethod
    def normalize_price(text: Optional[str], currency: str = "BRL") -> Optional[Price]:
        if not text or not text.strip():
            return None
        lowered = text.lower()
        if any(word in lowered for word in FREE_WORDS):
            return Price(min=0.0, max=0.0, currency=currency, is_free=True)

        amounts = [_parse_brl(m) for m in _BRL_AMOUNT.findall(text)]
        if not amounts:
            amounts = [_parse_brl(m) for m in _BARE_AMOUNT.findall(text)]
        if not amounts:
            return None
        if max(amounts) == 0:
            return Price(min=0.0, max=0.0, currency=currency, is_free=True)
        return Price(min=min(amounts), max=max(amounts), currency=currency, is_free=False)

    @staticmethod
    def normalize_url(url: Optional[str], base_url: Optional[str] = None) -> Optional[str]:
        if not url or not url.strip():
            return None
        resolved = urljoin(base_url, url.strip()) if base_url else url.strip()
        parsed = urlparse(resolved)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            logger.debug(f"Invalid event URL: {url}")
            return None
        return resolved

    # ---------------------------------------------- #
    # Scoring
    def calculate_quality_score(
        self,
        *,
        title: Optional[str],
        date: Optional[datetime],
        location: Optional[Location],
        image: Optional[Image],
        description: Optional[str],
        url: Optional[str],
    ) -> float:
        score = 0.0
        if title and len(title) >= self.validation.title_min_length:
            score += QUALITY_WEIGHTS["title"]
        if date is not None and self.date_parser.is_valid_date(date):
            score += QUALITY_WEIGHTS["date"]
        if location is not None and location.venue:
            score += QUALITY_WEIGHTS["venue"]
        if image is not None and image.url:
            score += QUALITY_WEIGHTS["image"]
        if description and len(description) > 20:
            score += QUALITY_WEIGHTS["description"]
        if url:
            score += QUALITY_WEIGHTS["url"]
        return round(min(max(score, 0.0), 1.0), 2)

    # ---------------------------------------------- #
    # Pipeline
    def _reject(self, errors: List[str], source: str, title: Optional[str]) -> ProcessingResult:
        self.rejected += 1
        for reason in errors:
            self.rejection_reasons[reason] = self.rejection_reasons.get(reason, 0) + 1
        logger.debug(f"Rejected {title!r} from {source}: {', '.join(errors)}")
        return ProcessingResult(success=False, errors=errors, source=source)

    def process_event_data(
        self,
        raw: Union[RawEventRecord, Mapping[str, Any]],
        source_name: Optional[str] = None,
    ) -> ProcessingResult:
        self.total_processed += 1

        if not isinstance(raw, RawEventRecord):
            try:
                raw = RawEventRecord.model_validate({"source": source_name or "unknown", **dict(raw)})
            except ValidationError as e:
                logger.debug(f"Malformed raw record: {e}")
                return self._reject(["invalid_record"], source_name or "unknown", None)

        source = source_name or raw.source
        self.source_distribution[source] = self.source_distribution.get(source, 0) + 1
        source_cfg = self.sources.get(source)
        filters = source_cfg.quality_filters if source_cfg else None
        base_url = source_cfg.base_url if source_cfg else None

        errors: List[str] = []

        # 1. required fields
        title = self.normalize_title(raw.title, filters.max_title_length if filters else None)
        if not title:
            errors.append("missing_title")
        if not raw.date_text or not raw.date_text.strip():
            errors.append("missing_date")
        if not raw.location_text or not raw.location_text.strip():
            errors.append("missing_location")

        # 2. title length
        min_title = filters.min_title_length if filters else self.validation.title_min_length
        if title and len(title) < min_title:
            errors.append("title_too_short")

        # 3. date
        date: Optional[datetime] = None
        if raw.date_text and raw.date_text.strip():
            date = self.date_parser.parse_date_time(raw.date_text)
            if date is None:
                errors.append("invalid_date")
            elif self.validation.future_events_only and not self.date_parser.is_future_event(date):
                errors.append("past_event")
            else:
                if date - self.date_parser.now() > timedelta(days=self.validation.max_days_in_future):
                    errors.append("event_too_far_future")

        description = self.normalize_description(raw.description)
        image_url = self.normalize_image_url(raw.image_url, base_url)
        if filters and filters.require_image and not image_url:
            errors.append("missing_image")
        if filters and filters.require_description and not description:
            errors.append("missing_description")
        if title and filters and filters.exclude_keywords:
            lowered = title.lower()
            if any(re.search(rf"(?<!\w){re.escape(k.lower())}(?!\w)", lowered) for k in filters.exclude_keywords):
                errors.append("excluded_keyword")

        if errors:
            return self._reject(errors, source, raw.title)

        # 4. normalise
        location = self.normalize_location(raw.location_text)
        image = Image(url=image_url, alt=title) if image_url else None
        price = self.normalize_price(raw.price_text, source_cfg.currency if source_cfg else "BRL")
        url = self.normalize_url(raw.url, base_url)
        organizer = re.sub(r"\s+", " ", raw.organizer).strip() if raw.organizer else None

        # 5. classify
        classification = self.classifier.classify_event(title, description or "")

        # 6. quality
        quality = self.calculate_quality_score(
            title=title, date=date, location=location, image=image, description=description, url=url
        )
        if quality < self.validation.min_quality_score:
            return self._reject(["low_quality_score"], source, raw.title)

        # 7. identity
        content_hash = compute_content_hash(title, date, location.venue if location else None)
        is_regional = raw.is_regional or (
            location is not None
            and self.regions.default_state is not None
            and location.state == self.regions.default_state
        )

        record = NormalizedEventRecord(
            title=title,
            date=date,
            location=location,
            image=image,
            price=price,
            description=description,
            organizer=organizer or None,
            url=url,
            category=classification.category,
            category_confidence=classification.confidence,
            tags=classification.tags,
            quality_score=quality,
            content_hash=content_hash,
            source=source,
            search_term=raw.search_term,
            is_regional=is_regional,
            scraped_at=raw.scraped_at,
        )

        self.successful += 1
        self.category_distribution[record.category] = self.category_distribution.get(record.category, 0) + 1
        return ProcessingResult(success=True, data=record, source=source)

    def process_events_batch(
        self,
        raws: Sequence[Union[RawEventRecord, Mapping[str, Any]]],
        source_name: Optional[str] = None,
    ) -> BatchResult:
        """Process a list; in-batch duplicates are rejected as ``duplicate_event``."""
        batch = BatchResult()
        seen: set = set()
        for raw in raws:
            try:
                result = self.process_event_data(raw, source_name)
            except Exception as e:
                logger.exception(f"Unexpected error processing record from {source_name}")
                batch.errors.append({"record": raw if isinstance(raw, Mapping) else raw.model_dump(), "error": str(e)})
                continue

            if not result.success:
                batch.rejected.append(result)
                continue
            if result.data.content_hash in seen:
                batch.rejected.append(
                    ProcessingResult(success=False, errors=["duplicate_event"], source=result.source)
                )
                self.rejection_reasons["duplicate_event"] = self.rejection_reasons.get("duplicate_event", 0) + 1
                continue
            seen.add(result.data.content_hash)
            batch.successful.append(result.data)

        logger.info(
            f"Batch from {source_name or 'mixed sources'}: {len(batch.successful)} ok, "
            f"{len(batch.rejected)} rejected, {len(batch.errors)} errors"
        )
        return batch

    @staticmethod
    def filter_by_date_range(
        records: Iterable[NormalizedEventRecord],
        date_range: DateRange,
        now: Optional[datetime] = None,
    ) -> List[NormalizedEventRecord]:
        if date_range is DateRange.ANY:
            return list(records)
        now = (now or datetime.now(BRT)).astimezone(BRT)
        start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        span = {
            DateRange.TODAY: timedelta(days=1),
            DateRange.WEEK: timedelta(days=7),
            DateRange.MONTH: timedelta(days=31),
            DateRange.YEAR: timedelta(days=366),
        }[date_range]
        return [r for r in records if r.date is not None and start <= r.date < start + span]

    # ---------------------------------------------- #
    # Stats
    def get_stats(self) -> Dict[str, Any]:
        return {
            "total_processed": self.total_processed,
            "successful": self.successful,
            "rejected": self.rejected,
            "success_rate": round(self.successful / self.total_processed * 100) if self.total_processed else 0,
            "rejection_reasons": dict(self.rejection_reasons),
            "source_distribution": dict(self.source_distribution),
            "category_distribution": dict(self.category_distribution),
            "date_parser": self.date_parser.get_stats(),
            "classifier": self.classifier.get_stats(),
        }

    def reset_stats(self) -> None:
        self.total_processed = 0
        self.successful = 0
        self.rejected = 0
        self.rejection_reasons: Dict[str, int] = {}
        self.source_distribution: Dict[str, int] = {}
        self.category_distribution: Dict[str, int] = {}
