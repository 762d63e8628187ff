"""Tests for the config system."""

import serenity.core.config as config_module
from serenity.core.config import (
    ContentConfig,
    EventsConfig,
    LiveConfig,
    SerenityConfig,
    ServerConfig,
    reload_config,
)


def test_live_defaults():
    cfg = LiveConfig()
    assert cfg.channel_name == "The Serenity Channel"
    assert cfg.refresh_interval == 300.0
    assert cfg.host_interval == 75.0
    assert cfg.overlay_interval == 60.0
    assert cfg.affirmation_interval == 9.0
    assert cfg.summary_interval == 45.0
    assert cfg.overlay_positions == ("center", "top", "bottom")


def test_events_defaults():
    cfg = EventsConfig()
    assert cfg.intention_ttl == 15.0
    assert cfg.light_ttl == 13.0
    assert cfg.light_ttl >= cfg.light_max_duration


def test_content_defaults():
    cfg = ContentConfig()
    assert cfg.provider == "openai"
    assert cfg.video_model == "sora-2"
    assert cfg.video_max_polls == 30
    assert cfg.media_dir.endswith("serenity-media")


def test_live_from_env(monkeypatch):
    monkeypatch.setenv("SERENITY_REFRESH_INTERVAL", "120")
    monkeypatch.setenv("SERENITY_SUMMARY_MIN_MESSAGES", "5")
    monkeypatch.setenv("SERENITY_CHANNEL_NAME", "Quiet Hour")
    cfg = LiveConfig.from_env()
    assert cfg.refresh_interval == 120.0
    assert cfg.summary_min_messages == 5
    assert cfg.channel_name == "Quiet Hour"


def test_content_api_key_from_openai_env(monkeypatch):
    """The API key comes from the standard OPENAI_API_KEY variable."""
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setenv("SERENITY_TEXT_MODEL", "gpt-4o")
    cfg = ContentConfig.from_env()
    assert cfg.api_key == "sk-test"
    assert cfg.text_model == "gpt-4o"


def test_server_from_env(monkeypatch):
    monkeypatch.setenv("SERENITY_PORT", "9001")
    cfg = ServerConfig.from_env()
    assert cfg.port == 9001


def test_root_config_composes_sections():
    cfg = SerenityConfig()
    assert isinstance(cfg.live, LiveConfig)
    assert isinstance(cfg.events, EventsConfig)
    assert isinstance(cfg.content, ContentConfig)
    assert isinstance(cfg.server, ServerConfig)


def test_reload_config_replaces_singleton(monkeypatch):
    original = config_module.config
    monkeypatch.setenv("SERENITY_HOST_INTERVAL", "30")
    try:
        new_config = reload_config()
        assert config_module.config is new_config
        assert new_config.live.host_interval == 30.0
    finally:
        config_module.config = original
