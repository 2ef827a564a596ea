"""Config management for Komi Shelf.

Reads `config.ini` from the data directory (beside the executable / main.py
unless DATA_DIR is set). The INI file only holds process-level options; user
preferences edited through the UI live in the data directory's settings.json.
"""

from __future__ import annotations

import configparser
import dataclasses
import os
import pathlib
import sys
from typing import Optional

from .logging_config import get_logger

logger = get_logger(__name__)


def _get_project_root() -> pathlib.Path:
    if getattr(sys, "frozen", False):
        return pathlib.Path(sys.executable).resolve().parent
    return pathlib.Path(__file__).resolve().parents[1]


PROJECT_ROOT = _get_project_root()

# DATA_DIR holds config.ini and the log file; the JSON store defaults to DATA_DIR/data.
DATA_DIR = pathlib.Path(os.environ.get("DATA_DIR", str(PROJECT_ROOT)))
DEFAULT_CONFIG_PATH = DATA_DIR / "config.ini"

DEFAULT_IMAGE_EXTENSIONS = ("jpg", "jpeg", "png", "webp", "gif")
DEFAULT_IGNORE_PATTERNS = ("__MACOSX", ".DS_Store", "Thumbs.db", "@eaDir")


@dataclasses.dataclass
class LibraryConfig:
    path: pathlib.Path
    name: str = "My Library"


@dataclasses.dataclass
class StorageConfig:
    data_dir: pathlib.Path = dataclasses.field(default_factory=lambda: DATA_DIR / "data")


@dataclasses.dataclass
class ScannerConfig:
    image_extensions: tuple[str, ...] = DEFAULT_IMAGE_EXTENSIONS
    ignore_patterns: tuple[str, ...] = DEFAULT_IGNORE_PATTERNS
    max_depth: int = 10
    follow_symlinks: bool = True


@dataclasses.dataclass
class RefreshConfig:
    cooldown_seconds: float = 5.0


@dataclasses.dataclass
class ServerConfig:
    host: str = "127.0.0.1"
    port: int = 8090


@dataclasses.dataclass
class LoggingConfig:
    level: str = "INFO"
    filename: str = "komi.log"


@dataclasses.dataclass
class ShelfConfig:
    library: LibraryConfig
    storage: StorageConfig = dataclasses.field(default_factory=StorageConfig)
    scanner: ScannerConfig = dataclasses.field(default_factory=ScannerConfig)
    refresh: RefreshConfig = dataclasses.field(default_factory=RefreshConfig)
    server: ServerConfig = dataclasses.field(default_factory=ServerConfig)
    logging: LoggingConfig = dataclasses.field(default_factory=LoggingConfig)

    @property
    def library_path(self) -> pathlib.Path:
        return self.library.path

    @property
    def data_dir(self) -> pathlib.Path:
        return self.storage.data_dir

    @property
    def server_host(self) -> str:
        return self.server.host

    @property
    def server_port(self) -> int:
        return self.server.port


def _parse_bool(value: Optional[str], default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _parse_list(value: str) -> tuple[str, ...]:
    return tuple(p.strip() for p in value.split(",") if p.strip())


def load_config(config_path: Optional[pathlib.Path] = None) -> ShelfConfig:
    """Load configuration from config.ini.

    Defaults to `config.ini` in DATA_DIR.
    """
    path = config_path or DEFAULT_CONFIG_PATH
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    parser = configparser.ConfigParser()
    parser.read(path, encoding="utf-8")

    lib_path = pathlib.Path(
        parser.get("library", "path", fallback="~/Comics")
    ).expanduser()
    lib_name = parser.get("library", "name", fallback="My Library")

    data_dir_raw = parser.get("storage", "data_dir", fallback="").strip()
    storage = StorageConfig(
        data_dir=pathlib.Path(data_dir_raw).expanduser() if data_dir_raw else DATA_DIR / "data"
    )

    scanner = ScannerConfig(
        image_extensions=tuple(
            ext.lower().lstrip(".")
            for ext in _parse_list(
                parser.get(
                    "scanner",
                    "image_extensions",
                    fallback=",".join(DEFAULT_IMAGE_EXTENSIONS),
                )
            )
        ),
        ignore_patterns=_parse_list(
            parser.get(
                "scanner",
                "ignore_patterns",
                fallback=",".join(DEFAULT_IGNORE_PATTERNS),
            )
        ),
        max_depth=parser.getint("scanner", "max_depth", fallback=10),
        follow_symlinks=_parse_bool(
            parser.get("scanner", "follow_symlinks", fallback="true"), True
        ),
    )

    refresh = RefreshConfig(
        cooldown_seconds=parser.getfloat("refresh", "cooldown_seconds", fallback=5.0),
    )

    server = ServerConfig(
        host=parser.get("server", "host", fallback="127.0.0.1"),
        port=parser.getint("server", "port", fallback=8090),
    )

    logging_config = LoggingConfig(
        level=parser.get("logging", "level", fallback="INFO").strip().upper() or "INFO",
        filename=parser.get("logging", "filename", fallback="komi.log").strip() or "komi.log",
    )

    if scanner.max_depth < 0:
        logger.warning(f"scanner.max_depth={scanner.max_depth} is negative, using 0")
        scanner.max_depth = 0

    return ShelfConfig(
        library=LibraryConfig(path=lib_path, name=lib_name),
        storage=storage,
        scanner=scanner,
        refresh=refresh,
        server=server,
        logging=logging_config,
    )


def write_default_config(
    config_path: pathlib.Path,
    library_path: pathlib.Path,
    library_name: str = "My Library",
) -> None:
    """Write a config.ini with default settings for the given library."""
    parser = configparser.ConfigParser()

    parser["library"] = {
        "path": str(library_path.expanduser()),
        "name": library_name,
    }
    parser["storage"] = {
        "data_dir": "",
    }
    parser["scanner"] = {
        "image_extensions": ",".join(DEFAULT_IMAGE_EXTENSIONS),
        "ignore_patterns": ",".join(DEFAULT_IGNORE_PATTERNS),
        "max_depth": "10",
        "follow_symlinks": "true",
    }
    parser["refresh"] = {
        "cooldown_seconds": "5",
    }
    parser["server"] = {
        "host": "127.0.0.1",
        "port": "8090",
    }
    parser["logging"] = {
        "level": "INFO",
        "filename": "komi.log",
    }

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as handle:
        parser.write(handle)
