from pathlib import Path

import pytest

from shelf import config as config_module
from shelf.config import (
    DEFAULT_IGNORE_PATTERNS,
    DEFAULT_IMAGE_EXTENSIONS,
    load_config,
    write_default_config,
)


def test_missing_config_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "config.ini")


def test_default_config_roundtrip(tmp_path):
    path = tmp_path / "config.ini"
    write_default_config(path, tmp_path / "comics", "Shelf")

    config = load_config(path)

    assert config.library_path == tmp_path / "comics"
    assert config.library.name == "Shelf"
    assert config.scanner.image_extensions == DEFAULT_IMAGE_EXTENSIONS
    assert config.scanner.ignore_patterns == DEFAULT_IGNORE_PATTERNS
    assert config.scanner.max_depth == 10
    assert config.scanner.follow_symlinks is True
    assert config.refresh.cooldown_seconds == 5.0
    assert config.server_port == 8090
    assert config.data_dir == config_module.DATA_DIR / "data"


def test_custom_values(tmp_path):
    path = tmp_path / "config.ini"
    path.write_text(
        "[library]\n"
        f"path = {tmp_path / 'lib'}\n"
        "[storage]\n"
        f"data_dir = {tmp_path / 'store'}\n"
        "[scanner]\n"
        "image_extensions = .JPG, avif\n"
        "max_depth = -3\n"
        "follow_symlinks = no\n"
        "[refresh]\n"
        "cooldown_seconds = 1.5\n"
        "[logging]\n"
        "level = debug\n",
        encoding="utf-8",
    )

    config = load_config(path)

    assert config.data_dir == tmp_path / "store"
    assert config.scanner.image_extensions == ("jpg", "avif")
    assert config.scanner.max_depth == 0
    assert config.scanner.follow_symlinks is False
    assert config.refresh.cooldown_seconds == 1.5
    assert config.logging.level == "DEBUG"
    assert config.logging.filename == "komi.log"


def test_default_config_writes_logging_section(tmp_path):
    path = tmp_path / "config.ini"
    write_default_config(path, Path("/lib"))

    config = load_config(path)

    assert config.logging.level == "INFO"
    assert config.logging.filename == "komi.log"
