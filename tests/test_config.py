"""Tests for TOML configuration and data directory resolution."""

from pathlib import Path

import pytest

from serpentnote.config import (
    CONFIG_FILENAME,
    AppConfig,
    get_data_dir,
    load_config,
    load_or_create_config,
    save_config,
)


class TestGetDataDir:
    """Resolution priority."""

    def test_explicit_path_wins(self, tmp_path, monkeypatch):
        monkeypatch.setenv("SERPENTNOTE_DATA_PATH", str(tmp_path / "env"))
        assert get_data_dir(tmp_path / "explicit") == (tmp_path / "explicit").resolve()

    def test_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("SERPENTNOTE_DATA_PATH", str(tmp_path / "env"))
        assert get_data_dir() == (tmp_path / "env").resolve()

    def test_default_in_cwd(self, tmp_path, monkeypatch):
        monkeypatch.delenv("SERPENTNOTE_DATA_PATH", raising=False)
        monkeypatch.chdir(tmp_path)
        assert get_data_dir() == (tmp_path / "serpentnote-data").resolve()


class TestConfigFile:
    """Load and save."""

    def test_create_writes_defaults(self, tmp_path):
        config = load_or_create_config(tmp_path)
        assert (tmp_path / CONFIG_FILENAME).exists()
        assert config.backend == "auto"
        assert config.save_interval_ms == 1000
        assert config.search_debounce_ms == 150
        assert config.gallery_batch == 20

    def test_round_trip(self, tmp_path):
        original = AppConfig(
            path=tmp_path, backend="files", use_worker=False,
            max_image_width=800, quota_warn_percent=70.0,
        )
        save_config(original)
        loaded = load_config(tmp_path)
        assert loaded.backend == "files"
        assert loaded.use_worker is False
        assert loaded.max_image_width == 800
        assert loaded.quota_warn_percent == 70.0
        assert loaded.created == original.created

    def test_existing_file_is_loaded(self, tmp_path):
        (tmp_path / CONFIG_FILENAME).write_text('[storage]\nbackend = "flat"\n')
        assert load_or_create_config(tmp_path).backend == "flat"

    def test_int_accepted_for_float(self, tmp_path):
        (tmp_path / CONFIG_FILENAME).write_text("[storage]\nquota_block_percent = 90\n")
        assert load_config(tmp_path).quota_block_percent == 90.0

    def test_wrong_type_rejected(self, tmp_path):
        (tmp_path / CONFIG_FILENAME).write_text('[timing]\nsave_interval_ms = "fast"\n')
        with pytest.raises(ValueError, match="save_interval_ms"):
            load_config(tmp_path)

    def test_newer_version_rejected(self, tmp_path):
        (tmp_path / CONFIG_FILENAME).write_text("[app]\nversion = 99\n")
        with pytest.raises(ValueError, match="newer"):
            load_config(tmp_path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path)

    def test_config_path(self):
        assert AppConfig(path=Path("/data")).config_path == Path("/data") / CONFIG_FILENAME
