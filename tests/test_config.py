"""
Configuration Tests
"""

import pytest
from pydantic import ValidationError

from exicon_server.config import (
    BatchConfig,
    FuzzyConfig,
    LinkingConfig,
    SearchBehavior,
    SearchConfig,
    Settings,
)


def test_defaults():
    config = SearchConfig()
    assert config.fuzzy.prefix_length == 1
    assert config.fuzzy.short_query_length == 5
    assert config.autocomplete.min_query_length == 2
    assert LinkingConfig().similarity_threshold == 0.8
    assert BatchConfig().page_size == 15
    assert BatchConfig().auto_apply is False


def test_search_config_is_frozen():
    config = SearchConfig()
    with pytest.raises(ValidationError):
        config.fuzzy = FuzzyConfig(enabled=False)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"fuzzy": FuzzyConfig(fields=("name", "slug"))},
        {"behavior": SearchBehavior(minimum_should_match=6)},
    ],
)
def test_search_config_rejects_inconsistent_values(kwargs):
    with pytest.raises(ValidationError):
        SearchConfig(**kwargs)


def test_range_checks():
    with pytest.raises(ValidationError):
        LinkingConfig(similarity_threshold=1.5)
    with pytest.raises(ValidationError):
        BatchConfig(page_delay_seconds=-1)


def test_nested_env_overrides(monkeypatch):
    monkeypatch.setenv("SEARCH__FUZZY__PREFIX_LENGTH", "2")
    monkeypatch.setenv("BATCH__AUTO_APPLY", "true")
    monkeypatch.setenv("LINKING__SIMILARITY_THRESHOLD", "0.9")

    settings = Settings(_env_file=None)

    assert settings.search.fuzzy.prefix_length == 2
    assert settings.batch.auto_apply is True
    assert settings.linking.similarity_threshold == 0.9
    assert settings.openai_api_key.get_secret_value()


def test_missing_credentials_fail(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    with pytest.raises(ValidationError):
        Settings(_env_file=None)
