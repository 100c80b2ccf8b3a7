"""Tests for settings module."""

import json
import os

import pytest

from vidblock import settings
from vidblock.settings import (
    get_channel,
    is_valid_playlist_id,
    list_channels,
    load_settings,
    normalize_channel,
    slugify,
    validate_settings,
)


@pytest.mark.unit
def test_slugify():
    assert slugify("Hip Hop / Rap") == "hip-hop-rap"
    assert slugify("") == "channel"
    assert slugify("", fallback="x") == "x"


@pytest.mark.unit
def test_normalize_channel_defaults_to_music_shape():
    normalized = normalize_channel({"name": "Rock", "playlists": ["PLaaaaaaaaaaaaa1"]})
    assert normalized["id"] == "rock"
    assert normalized["kind"] == "music"
    assert normalized["block_size"] == 12
    assert normalized["bumper_pattern"] == "positional"
    assert normalized["unlockable"] is False
    assert normalized["include_in_random"] is True
    assert normalized["playlist_labels"] == {"PLaaaaaaaaaaaaa1": "Rock mix"}


@pytest.mark.unit
def test_normalize_channel_short_form():
    normalized = normalize_channel({"id": "shows", "name": "Shows"})
    assert normalized["kind"] == "short_form"
    assert normalized["block_size"] == 3
    assert normalized["bumper_pattern"] == "short_form"
    assert normalized["include_in_random"] is False


@pytest.mark.unit
def test_normalize_channel_rejects_unknown_kind_and_bad_size():
    normalized = normalize_channel({"id": "x", "kind": "opera", "block_size": "lots"})
    assert normalized["kind"] == "music"
    assert normalized["block_size"] == 12


@pytest.mark.unit
def test_normalize_channel_dedupes_playlists_and_keeps_labels():
    normalized = normalize_channel(
        {
            "id": "mix",
            "name": "Mix",
            "playlists": [
                {"id": "PLaaaaaaaaaaaaa1", "label": "First"},
                "PLaaaaaaaaaaaaa1",
                "PLbbbbbbbbbbbbb2",
                "",
            ],
        }
    )
    assert normalized["playlists"] == ["PLaaaaaaaaaaaaa1", "PLbbbbbbbbbbbbb2"]
    assert normalized["playlist_labels"]["PLaaaaaaaaaaaaa1"] == "First"
    assert normalized["playlist_labels"]["PLbbbbbbbbbbbbb2"] == "Mix mix"


@pytest.mark.unit
def test_unlockable_channel_excluded_from_random_by_default():
    normalized = normalize_channel({"id": "secret", "unlockable": True})
    assert normalized["unlockable"] is True
    assert normalized["include_in_random"] is False


@pytest.mark.unit
def test_validate_settings_requires_channels():
    with pytest.raises(ValueError):
        validate_settings({})
    with pytest.raises(ValueError):
        validate_settings({"channels": []})


@pytest.mark.unit
def test_fixture_catalog_loads():
    data = load_settings()
    ids = [channel["id"] for channel in data["channels"]]
    assert ids == ["rock", "jazz", "live", "shows", "random", "secret", "empty"]
    assert data["bumper_playlists"] == ["PLbumperAAAAAAAA1"]
    assert get_channel("jazz")["playlists"] == ["PLjazzAAAAAAAAAA1"]
    assert get_channel("live")["kind"] == "live"
    assert get_channel("nope") is None


@pytest.mark.unit
def test_load_settings_reloads_when_file_changes(tmp_path, monkeypatch):
    config = tmp_path / "channels.json"
    config.write_text(json.dumps({"channels": [{"id": "one", "name": "One"}]}))
    monkeypatch.setenv("VIDBLOCK_CHANNELS_CONFIG", str(config))
    settings.invalidate_settings_cache()

    assert [c["id"] for c in list_channels()] == ["one"]

    config.write_text(json.dumps({"channels": [{"id": "two", "name": "Two"}]}))
    stat = config.stat()
    os.utime(config, (stat.st_atime, stat.st_mtime + 10))

    assert [c["id"] for c in list_channels()] == ["two"]
    assert get_channel("one") is None


@pytest.mark.unit
def test_is_valid_playlist_id():
    assert is_valid_playlist_id("PLabc_def-12345")
    assert is_valid_playlist_id("PL300C32DA374417AA")
    assert not is_valid_playlist_id("PL12345")
    assert not is_valid_playlist_id("PL has spaces 123")
    assert not is_valid_playlist_id("PLabc;drop-table")
    assert not is_valid_playlist_id(None)
    assert not is_valid_playlist_id(12345678901234)


@pytest.mark.unit
def test_database_url_respects_toggle(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    assert settings.database_url() is None

    monkeypatch.setenv("DATABASE_URL", "sqlite:///catalog.db")
    assert settings.database_url() == "sqlite:///catalog.db"

    monkeypatch.setenv("VIDBLOCK_USE_DATABASE", "false")
    assert settings.database_url() is None


@pytest.mark.unit
def test_suppression_settings_from_env(monkeypatch):
    monkeypatch.delenv("VIDBLOCK_SUPPRESSION_THRESHOLD", raising=False)
    assert settings.suppression_threshold() == 50
    monkeypatch.setenv("VIDBLOCK_SUPPRESSION_THRESHOLD", "5")
    assert settings.suppression_threshold() == 5
    monkeypatch.setenv("VIDBLOCK_SUPPRESSION_RESET_DAYS", "not-a-number")
    assert settings.suppression_reset_days() == 30


@pytest.mark.unit
def test_cors_origins_parsing(monkeypatch):
    monkeypatch.setenv("CORS_ORIGINS", "http://a.test, http://b.test,,")
    assert settings.cors_origins() == ["http://a.test", "http://b.test"]
