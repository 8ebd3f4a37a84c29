"""Tests for store configuration."""

import pytest

from feedcache.config import (
    CONFIG_FILENAME,
    CONFIG_VERSION,
    DEFAULT_KEEP_ISSUES,
    CacheConfig,
    default_store_path,
    load_config,
    load_or_create_config,
    save_config,
)


class TestConfig:

    def test_create_default(self, tmp_path):
        config = load_or_create_config(tmp_path / "store")
        assert (tmp_path / "store" / CONFIG_FILENAME).exists()
        assert config.keep_issues == DEFAULT_KEEP_ISSUES
        assert config.version == CONFIG_VERSION

    def test_round_trip(self, tmp_path):
        config = CacheConfig(path=tmp_path, keep_issues=3, facsimile_scale=1.5,
                             facsimile_quality=70)
        save_config(config)
        loaded = load_config(tmp_path)
        assert loaded.keep_issues == 3
        assert loaded.facsimile_scale == 1.5
        assert loaded.facsimile_quality == 70
        assert loaded.created == config.created

    def test_existing_config_is_loaded(self, tmp_path):
        save_config(CacheConfig(path=tmp_path, keep_issues=5))
        assert load_or_create_config(tmp_path).keep_issues == 5

    def test_missing_sections_use_defaults(self, tmp_path):
        (tmp_path / CONFIG_FILENAME).write_text('[store]\nversion = 1\n')
        config = load_config(tmp_path)
        assert config.keep_issues == DEFAULT_KEEP_ISSUES
        assert config.created == ""

    def test_newer_version_rejected(self, tmp_path):
        (tmp_path / CONFIG_FILENAME).write_text(f"[store]\nversion = {CONFIG_VERSION + 1}\n")
        with pytest.raises(ValueError):
            load_config(tmp_path)

    def test_negative_keep_rejected(self, tmp_path):
        (tmp_path / CONFIG_FILENAME).write_text("[eviction]\nkeep_issues = -2\n")
        with pytest.raises(ValueError):
            load_config(tmp_path)

    def test_missing_config(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path)

    def test_default_store_path(self, tmp_path, monkeypatch):
        monkeypatch.setenv("FEEDCACHE_STORE_PATH", str(tmp_path / "env-store"))
        assert default_store_path() == tmp_path / "env-store"
        monkeypatch.delenv("FEEDCACHE_STORE_PATH")
        assert default_store_path().name == ".feedcache"

    def test_cache_uses_config(self, tmp_path):
        from feedcache.api import ArticleCache

        save_config(CacheConfig(path=tmp_path, keep_issues=7))
        with ArticleCache(tmp_path) as cache:
            assert cache.config.keep_issues == 7
            assert (tmp_path / "feedcache.db").exists()
            assert (tmp_path / "feedcache-ops.log").exists()
