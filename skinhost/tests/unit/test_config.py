"""Tests for SkinConfig validation and environment loading."""

import pytest
from pydantic import ValidationError

from skinhost.src.services.config import DEFAULT_SKIP_SCRIPTS, SkinConfig, get_config, reload_config
from skinhost.src.services.skin import binder


ENV_KEYS = (
    "SKIN_LAYOUT_DOCUMENT",
    "SKIN_SKIP_SCRIPTS",
    "SKIN_SCRIPT_TIMEOUT",
    "SKIN_MAX_INCLUDE_DEPTH",
    "SKIN_ENGINE_LOG",
    "SKIN_FETCH_TIMEOUT",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Start every test from an unset environment and a cold cache."""
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    get_config.cache_clear()
    yield
    get_config.cache_clear()


class TestSkinConfigDefaults:

    def test_defaults(self):
        config = SkinConfig()

        assert config.layout_document == "skin.xml"
        assert config.skip_scripts == ("standardframe.maki",)
        assert config.script_timeout_seconds == 5.0
        assert config.max_include_depth == 16
        assert config.engine_log is False
        assert config.fetch_timeout_seconds == 30.0

    def test_frozen(self):
        config = SkinConfig()
        with pytest.raises(ValidationError):
            config.max_include_depth = 3


class TestSkinConfigValidation:

    def test_comma_separated_names(self):
        config = SkinConfig(skip_scripts=" standardframe.maki , , eq.maki")

        assert config.skip_scripts == ("standardframe.maki", "eq.maki")

    def test_empty_skip_list_allowed(self):
        assert SkinConfig(skip_scripts="").skip_scripts == ()

    def test_layout_document_normalized(self):
        assert SkinConfig(layout_document=" xml\\skin.xml ").layout_document == "xml/skin.xml"

    def test_blank_layout_document_rejected(self):
        with pytest.raises(ValidationError):
            SkinConfig(layout_document="  ")

    @pytest.mark.parametrize("field,value", [
        ("script_timeout_seconds", 0),
        ("script_timeout_seconds", 301),
        ("max_include_depth", 0),
        ("max_include_depth", 257),
        ("fetch_timeout_seconds", -1),
    ])
    def test_out_of_bounds(self, field, value):
        with pytest.raises(ValidationError):
            SkinConfig(**{field: value})


class TestGetConfig:

    def test_defaults_from_empty_environment(self):
        assert get_config() == SkinConfig()

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("SKIN_LAYOUT_DOCUMENT", "main.xml")
        monkeypatch.setenv("SKIN_SKIP_SCRIPTS", "standardframe.maki,visualizer.maki")
        monkeypatch.setenv("SKIN_SCRIPT_TIMEOUT", "2.5")
        monkeypatch.setenv("SKIN_MAX_INCLUDE_DEPTH", "4")
        monkeypatch.setenv("SKIN_ENGINE_LOG", "yes")
        monkeypatch.setenv("SKIN_FETCH_TIMEOUT", "10")

        config = get_config()

        assert config.layout_document == "main.xml"
        assert config.skip_scripts == ("standardframe.maki", "visualizer.maki")
        assert config.script_timeout_seconds == 2.5
        assert config.max_include_depth == 4
        assert config.engine_log is True
        assert config.fetch_timeout_seconds == 10.0

    def test_unparseable_numbers_fall_back_to_defaults(self, monkeypatch):
        monkeypatch.setenv("SKIN_SCRIPT_TIMEOUT", "soon")
        monkeypatch.setenv("SKIN_MAX_INCLUDE_DEPTH", "deep")

        config = get_config()

        assert config.script_timeout_seconds == 5.0
        assert config.max_include_depth == 16

    def test_cached_until_reload(self, monkeypatch):
        first = get_config()
        monkeypatch.setenv("SKIN_MAX_INCLUDE_DEPTH", "8")

        assert get_config() is first
        assert reload_config().max_include_depth == 8


class TestFixedDefaults:

    def test_binder_shares_default_skip_list(self):
        assert binder.DEFAULT_SKIP_SCRIPTS is DEFAULT_SKIP_SCRIPTS

    def test_scope_tags_are_not_configurable(self, monkeypatch):
        monkeypatch.setenv("SKIN_SCOPE_TAGS", "container")

        config = reload_config()

        assert "scope_tags" not in SkinConfig.model_fields
        assert not hasattr(config, "scope_tags")
