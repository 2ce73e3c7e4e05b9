"""
Application Configuration

All tunables are read once from the environment (and an optional ``.env``
file) into immutable, validated models. Nested sections use ``__`` as the
env separator, e.g. ``SEARCH__FUZZY__PREFIX_LENGTH=2`` or
``BATCH__AUTO_APPLY=true``.

Missing credentials (``DATABASE_URL``, ``OPENAI_API_KEY``) raise at import
time so that services and batch jobs fail before doing any work.
"""

from __future__ import annotations

from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# ---------------------------------------------------------------------
# Search Configuration
# ---------------------------------------------------------------------

class MaxEdits(BaseModel):
    """Edit-distance budget keyed by query length bucket."""
    short: int = Field(default=1, ge=0, le=2)
    long: int = Field(default=2, ge=0, le=2)

    model_config = ConfigDict(frozen=True, extra="forbid")


class FuzzyConfig(BaseModel):
    """
    Typo tolerance.

    ``short_query_length`` is the inclusive upper bound of the "short"
    bucket: queries at or below it use ``max_edits.short``. A
    ``prefix_length`` of 1 stops "must" from matching "music".
    """
    enabled: bool = True
    max_edits: MaxEdits = Field(default_factory=MaxEdits)
    short_query_length: int = Field(default=5, ge=0)
    prefix_length: int = Field(default=1, ge=0)
    max_expansions: int = Field(default=50, ge=1)
    fields: Tuple[str, ...] = ("name", "aliases", "text")

    model_config = ConfigDict(frozen=True, extra="forbid")


class FieldWeights(BaseModel):
    """Boost applied to each field's clause before scores are summed."""
    name: float = Field(default=3.0, gt=0)
    aliases: float = Field(default=2.5, gt=0)
    tags: float = Field(default=2.5, gt=0)
    description: float = Field(default=2.0, gt=0)
    text: float = Field(default=1.0, gt=0)

    model_config = ConfigDict(frozen=True, extra="forbid")

    def for_field(self, field: str) -> float:
        return float(getattr(self, field))


class SearchBehavior(BaseModel):
    score_threshold: Optional[float] = Field(default=None, ge=0)
    minimum_should_match: int = Field(default=1, ge=1)

    model_config = ConfigDict(frozen=True, extra="forbid")


class AutocompleteConfig(BaseModel):
    enabled: bool = True
    max_edits: int = Field(default=1, ge=0, le=2)
    min_query_length: int = Field(default=2, ge=1)
    max_suggestions: int = Field(default=5, ge=1)

    model_config = ConfigDict(frozen=True, extra="forbid")


class PerformanceConfig(BaseModel):
    enable_caching: bool = True
    cache_seconds: int = Field(default=300, ge=0)

    model_config = ConfigDict(frozen=True, extra="forbid")


class DebugConfig(BaseModel):
    log_queries: bool = False
    log_scores: bool = False
    enable_fallback: bool = True

    model_config = ConfigDict(frozen=True, extra="forbid")


SEARCHABLE_FIELDS = ("name", "aliases", "description", "text", "tags")


class SearchConfig(BaseModel):
    """
    Process-wide search tuning.

    Instances are frozen: a search call reads one snapshot and changes
    only take effect for subsequent calls.
    """
    fuzzy: FuzzyConfig = Field(default_factory=FuzzyConfig)
    field_weights: FieldWeights = Field(default_factory=FieldWeights)
    behavior: SearchBehavior = Field(default_factory=SearchBehavior)
    autocomplete: AutocompleteConfig = Field(default_factory=AutocompleteConfig)
    performance: PerformanceConfig = Field(default_factory=PerformanceConfig)
    debug: DebugConfig = Field(default_factory=DebugConfig)

    model_config = ConfigDict(frozen=True, extra="forbid")

    @model_validator(mode="after")
    def _check_fields(self) -> "SearchConfig":
        unknown = [f for f in self.fuzzy.fields if f not in SEARCHABLE_FIELDS]
        if unknown:
            raise ValueError(f"Unknown fuzzy fields: {', '.join(unknown)}")
        if self.behavior.minimum_should_match > len(SEARCHABLE_FIELDS):
            raise ValueError("minimum_should_match exceeds the number of searchable fields")
        return self


# ---------------------------------------------------------------------
# Linking / Batch / LLM / Cache
# ---------------------------------------------------------------------

DEFAULT_EXERCISE_VOCABULARY: Tuple[str, ...] = (
    "Murder Bunny/Murder Bunnies: hop forward with block",
    "Merkin/Merkins: push up (derkin = decline pushup)",
    "Burpee/Burpees: squat thrust with jump",
    "Man Maker: complex movement with weights",
    "Squat Thruster: squat to overhead press",
    "Hand Release Merkin: pushup with hand lift",
    "Clap-Merkin: pushup with clap",
    "Clurpee: burpee variation",
    "Dora: partner routine",
    "11s: ladder exercise",
    "Al Gore: holding squat",
    "SSH/Side Straddle Hop: jumping jack",
    "Tuck Jump: jump bringing knees to chest",
    "Bear Crawl: crawling on hands and feet",
    "Mountain Climber: plank with alternating knees",
    "Flutter Kick: leg raises lying down",
    "6 Minutes of Marys: abs routine",
    "Carolina dry dock: push ups with butt high in air",
)


class LinkingConfig(BaseModel):
    similarity_threshold: float = Field(default=0.8, ge=0.0, le=1.0)
    max_search_hits: int = Field(default=10, ge=1)
    llm_timeout_seconds: float = Field(default=60.0, gt=0)
    search_timeout_seconds: float = Field(default=10.0, gt=0)
    vocabulary: Tuple[str, ...] = DEFAULT_EXERCISE_VOCABULARY

    model_config = ConfigDict(frozen=True, extra="forbid")


class BatchConfig(BaseModel):
    page_size: int = Field(default=15, ge=1)
    page_delay_seconds: float = Field(default=5.0, ge=0)
    document_delay_seconds: float = Field(default=1.0, ge=0)
    max_concurrency: int = Field(default=1, ge=1)
    auto_apply: bool = False
    auto_apply_min_confidence: float = Field(default=0.8, ge=0.0, le=1.0)

    model_config = ConfigDict(frozen=True, extra="forbid")


class LLMConfig(BaseModel):
    model: str = "gpt-4o-mini"
    base_url: str = "https://api.openai.com/v1"
    temperature: float = Field(default=0.1, ge=0.0, le=2.0)
    max_tokens: int = Field(default=1000, ge=1)
    timeout_seconds: float = Field(default=60.0, gt=0)

    model_config = ConfigDict(frozen=True, extra="forbid")


class CacheConfig(BaseModel):
    default_ttl_seconds: float = Field(default=300.0, gt=0)
    sweep_interval_seconds: float = Field(default=60.0, gt=0)
    listing_ttl_seconds: float = Field(default=600.0, gt=0)
    detail_ttl_seconds: float = Field(default=1800.0, gt=0)
    similar_ttl_seconds: float = Field(default=1200.0, gt=0)
    popular_tags_ttl_seconds: float = Field(default=3600.0, gt=0)
    invalidation_pages: int = Field(default=5, ge=1)

    model_config = ConfigDict(frozen=True, extra="forbid")


# ---------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------

class Settings(BaseSettings):
    database_url: str
    openai_api_key: SecretStr

    search_index_dir: str = "/app/data/search_index"
    listing_page_size: int = 12

    search: SearchConfig = Field(default_factory=SearchConfig)
    linking: LinkingConfig = Field(default_factory=LinkingConfig)
    batch: BatchConfig = Field(default_factory=BatchConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)

    log_level: str = "INFO"
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )


settings = Settings()
