# tests/test_config.py
"""
Tests for environment-driven configuration.

Run:
    pytest tests/test_config.py -v
"""
import pytest

from config import Config, ConfigurationError


class TestConfig:

    def test_defaults_without_initialization(self):
        Config.reset()

        assert Config.get(Config.PARTNER_UPLINE_DEPTH) == 5
        assert Config.get(Config.GUEST_UPLINE_DEPTH) == 3
        assert Config.root_ids() == ["001"]

    def test_initialize_from_env(self, monkeypatch):
        monkeypatch.setenv("ROOT_PARTNER_IDS", "001, 002 ,")
        monkeypatch.setenv("RECENT_ORPHAN_DAYS", "14")
        monkeypatch.setenv("PRODUCT_DEFAULTS", '{"H2-9": {"retail": "9000"}}')

        Config.initialize_from_env()

        assert Config.root_ids() == ["001", "002"]
        assert Config.is_root("002")
        assert Config.get(Config.RECENT_ORPHAN_DAYS) == 14
        assert Config.get(Config.PRODUCT_DEFAULTS) == {"H2-9": {"retail": "9000"}}

    def test_bad_product_defaults_json_ignored(self, monkeypatch):
        monkeypatch.setenv("PRODUCT_DEFAULTS", "{not json")

        Config.initialize_from_env()

        assert Config.get(Config.PRODUCT_DEFAULTS) == {}

    def test_bad_integer_raises(self, monkeypatch):
        monkeypatch.setenv("MAX_CHAIN_DEPTH", "deep")

        with pytest.raises(ConfigurationError):
            Config.initialize_from_env()

    def test_runtime_override(self):
        Config.set(Config.SIMILAR_IDS_LIMIT, 1)

        assert Config.get_all()[Config.SIMILAR_IDS_LIMIT] == 1
