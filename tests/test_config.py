from moku_explore.config import ExploreConfig


def test_defaults(monkeypatch):
    for name in ("SUWAYOMI_URL", "PREFERRED_LANG", "QUERY_RETRIES", "GENRE_DRILL_PAGES", "POPULAR_SOURCE_LIMIT", "CATEGORY_SOURCE_LIMIT", "GENRE_DRILL_SOURCE_LIMIT"):
        monkeypatch.delenv(name, raising=False)
    config = ExploreConfig.from_env(load_env_file=False)
    assert config.server_url == "http://127.0.0.1:4567"
    assert config.preferred_lang == "en"
    assert config.query_retries == 8
    assert config.popular_source_limit == 2
    assert config.genre_drill_source_limit == 8


def test_environment_overrides_are_clamped(monkeypatch):
    monkeypatch.setenv("SUWAYOMI_URL", "http://nas.local:4567/")
    monkeypatch.setenv("PREFERRED_LANG", "es")
    monkeypatch.setenv("QUERY_RETRIES", "0")
    monkeypatch.setenv("QUERY_RETRY_DELAY", "not-a-number")
    monkeypatch.setenv("POPULAR_SOURCE_LIMIT", "-1")
    monkeypatch.setenv("CATEGORY_SOURCE_LIMIT", "-3")
    config = ExploreConfig.from_env(load_env_file=False)
    assert config.server_url == "http://nas.local:4567"
    assert config.preferred_lang == "es"
    assert config.query_retries == 1
    assert config.query_retry_delay == 0.5
    assert config.popular_source_limit == 0
    assert config.category_source_limit == 0
