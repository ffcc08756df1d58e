"""
MediaSignals: the read-only projection of a catalog item the evaluator sees.

Built from the ingestion-owned rows. Country and language codes are
normalized here so the evaluator never has to second-guess its input.
"""
import math
from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional, Tuple

from catalog_policy.engine.types import PROVIDER_OFFER_TYPES

# TMDB-style placeholder for "no spoken language"
_UNKNOWN_LANGUAGES = {'xx', 'zz'}


def normalize_origin_countries(raw) -> Tuple[str, ...]:
    """Uppercase two-letter codes, deduplicated in first-seen order."""
    if not raw:
        return ()
    if isinstance(raw, str):
        raw = [raw]
    out = []
    for value in raw:
        if not isinstance(value, str):
            continue
        code = value.strip().upper()
        if len(code) == 2 and code.isascii() and code.isalpha() and code not in out:
            out.append(code)
    return tuple(out)


def normalize_original_language(raw) -> Optional[str]:
    if not isinstance(raw, str):
        return None
    code = raw.strip().lower()
    if len(code) != 2 or not code.isascii() or not code.isalpha():
        return None
    if code in _UNKNOWN_LANGUAGES:
        return None
    return code


def is_present(value) -> bool:
    """A rating or vote counts only when it is a real number."""
    if value is None or isinstance(value, bool):
        return False
    if not isinstance(value, (int, float)):
        return False
    return not math.isnan(value)


@dataclass(frozen=True)
class MediaScores:
    """Precomputed quality/popularity/freshness triple, each 0..1."""
    quality: Optional[float] = None
    popularity: Optional[float] = None
    freshness: Optional[float] = None


@dataclass(frozen=True)
class MediaSignals:
    media_item_id: str
    origin_countries: Tuple[str, ...] = ()
    original_language: Optional[str] = None
    watch_providers: Dict = field(default_factory=dict)
    ratings: Dict[str, Optional[float]] = field(default_factory=dict)
    votes: Dict[str, Optional[int]] = field(default_factory=dict)
    stats: Optional[MediaScores] = None
    title: str = ''
    media_type: Optional[str] = None

    @classmethod
    def from_row(cls, item, stats=None) -> 'MediaSignals':
        """Build from a MediaItem row and its optional MediaStats row."""
        scores = None
        if stats is not None:
            scores = MediaScores(
                quality=stats.quality_score,
                popularity=stats.popularity_score,
                freshness=stats.freshness_score,
            )
        return cls(
            media_item_id=item.id,
            origin_countries=normalize_origin_countries(item.origin_countries),
            original_language=normalize_original_language(item.original_language),
            watch_providers=item.watch_providers or {},
            ratings={
                'imdb': item.rating_imdb,
                'trakt': item.rating_trakt,
                'metacritic': item.rating_metacritic,
                'rotten_tomatoes': item.rating_rotten_tomatoes,
            },
            votes={
                'imdb': item.vote_count_imdb,
                'trakt': item.vote_count_trakt,
            },
            stats=scores,
            title=item.title or '',
            media_type=item.type,
        )

    def provider_names(self) -> set:
        """Every provider name across all regions and offer types."""
        names = set()
        if not isinstance(self.watch_providers, dict):
            return names
        for region in self.watch_providers.values():
            if not isinstance(region, dict):
                continue
            for offer_type in PROVIDER_OFFER_TYPES:
                for provider in region.get(offer_type) or []:
                    name = provider.get('name') if isinstance(provider, dict) else provider
                    if name:
                        names.add(name)
        return names

    def has_any_provider(self, providers: Iterable[str]) -> bool:
        wanted = set(providers)
        return bool(wanted) and not wanted.isdisjoint(self.provider_names())

    def has_any_rating(self, sources: Iterable[str]) -> bool:
        return any(is_present(self.ratings.get(source)) for source in sources)

    def vote_count(self, source: str) -> Optional[int]:
        value = self.votes.get(source)
        return value if is_present(value) else None

    def quality_score(self) -> Optional[float]:
        if self.stats is None or not is_present(self.stats.quality):
            return None
        return self.stats.quality
