"""Tests for config.ini loading."""

import pytest

from lectern.config import DEFAULT_FORMATS, load_config, write_default_config


def test_default_config_round_trip(tmp_path):
    config_path = tmp_path / "config.ini"
    write_default_config(config_path, tmp_path / "books", "Shelf")

    config = load_config(config_path)

    assert config.library_path == tmp_path / "books"
    assert config.library.name == "Shelf"
    assert config.scanner.interval_seconds == 300
    assert config.scanner.supported_formats == DEFAULT_FORMATS
    assert config.extraction.workers == 2
    assert config.covers.width == 280


def test_missing_config_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.ini")


def test_partial_config_uses_defaults_and_drops_unknown_formats(tmp_path):
    config_path = tmp_path / "config.ini"
    config_path.write_text(
        "[library]\npath = ~/comics\n\n"
        "[scanner]\nsupported_formats = CBZ, .epub, mobi\n\n"
        "[extraction]\nworkers = 0\n"
    )

    config = load_config(config_path)

    assert "~" not in str(config.library_path)
    assert config.scanner.supported_formats == ("cbz", "epub")
    assert config.extraction.workers == 1
    assert config.extraction.queue_size == 64


def test_logging_section(tmp_path):
    config_path = tmp_path / "config.ini"
    write_default_config(config_path, tmp_path / "books", "Shelf")
    assert load_config(config_path).logging.level == "INFO"

    config_path.write_text(
        "[library]\npath = /books\n\n[logging]\nlevel = debug\nmax_size_mb = 2\nbackups = 1\n"
    )
    config = load_config(config_path)

    assert config.logging.level == "DEBUG"
    assert config.logging.max_bytes == 2 * 1024 * 1024
    assert config.logging.backup_count == 1
    assert config.logging.filename == "lectern.log"
