"""Config management for Lectern.

Reads `config.ini` from DATA_DIR (the project root unless the `DATA_DIR`
environment variable points elsewhere, e.g. a Docker volume).
"""

from __future__ import annotations

import configparser
import dataclasses
import os
import pathlib
from typing import Optional

from .logging_config import LoggingConfig, get_logger

logger = get_logger(__name__)

PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[1]

# DATA_DIR holds all persistent state (config.ini, library.db, lectern.log).
DATA_DIR = pathlib.Path(os.environ.get("DATA_DIR", str(PROJECT_ROOT)))
DEFAULT_CONFIG_PATH = DATA_DIR / "config.ini"

DEFAULT_FORMATS = ("cbz", "cbr", "cb7", "epub", "pdf", "txt")
DEFAULT_IGNORE_PATTERNS = (".DS_Store", "Thumbs.db", "@eaDir")


@dataclasses.dataclass
class LibraryConfig:
    path: pathlib.Path
    name: str = "My Library"


@dataclasses.dataclass
class ScannerConfig:
    interval_seconds: int = 300
    supported_formats: tuple[str, ...] = DEFAULT_FORMATS
    ignore_patterns: tuple[str, ...] = DEFAULT_IGNORE_PATTERNS


@dataclasses.dataclass
class ExtractionConfig:
    workers: int = 2
    queue_size: int = 64
    # Pending items extracted in the background after each scan cycle (0 disables).
    batch_size: int = 100
    timeout_seconds: int = 120


@dataclasses.dataclass
class CoverConfig:
    width: int = 280
    height: int = 430
    quality: int = 75


@dataclasses.dataclass
class LecternConfig:
    library: LibraryConfig
    scanner: ScannerConfig = dataclasses.field(default_factory=ScannerConfig)
    extraction: ExtractionConfig = dataclasses.field(default_factory=ExtractionConfig)
    covers: CoverConfig = dataclasses.field(default_factory=CoverConfig)
    logging: LoggingConfig = dataclasses.field(default_factory=LoggingConfig)

    @property
    def library_path(self) -> pathlib.Path:
        return self.library.path


def _split_list(value: str) -> tuple[str, ...]:
    return tuple(part.strip() for part in value.split(",") if part.strip())


def load_config(config_path: Optional[pathlib.Path] = None) -> LecternConfig:
    """Load configuration from config.ini.

    Defaults to `config.ini` in DATA_DIR.
    """
    path = config_path or DEFAULT_CONFIG_PATH
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    parser = configparser.ConfigParser()
    parser.read(path)

    library = LibraryConfig(
        path=pathlib.Path(
            parser.get("library", "path", fallback="/path/to/books")
        ).expanduser(),
        name=parser.get("library", "name", fallback="My Library"),
    )

    scanner = ScannerConfig(
        interval_seconds=parser.getint("scanner", "interval_seconds", fallback=300),
        supported_formats=tuple(
            fmt.lower().lstrip(".")
            for fmt in _split_list(
                parser.get("scanner", "supported_formats", fallback=",".join(DEFAULT_FORMATS))
            )
        ),
        ignore_patterns=_split_list(
            parser.get(
                "scanner",
                "ignore_patterns",
                fallback=",".join(DEFAULT_IGNORE_PATTERNS),
            )
        ),
    )

    extraction = ExtractionConfig(
        workers=max(1, parser.getint("extraction", "workers", fallback=2)),
        queue_size=max(1, parser.getint("extraction", "queue_size", fallback=64)),
        batch_size=max(0, parser.getint("extraction", "batch_size", fallback=100)),
        timeout_seconds=parser.getint("extraction", "timeout_seconds", fallback=120),
    )

    covers = CoverConfig(
        width=parser.getint("covers", "width", fallback=280),
        height=parser.getint("covers", "height", fallback=430),
        quality=parser.getint("covers", "quality", fallback=75),
    )

    defaults = LoggingConfig()
    logging_config = LoggingConfig(
        level=parser.get("logging", "level", fallback=defaults.level).upper(),
        filename=parser.get("logging", "filename", fallback=defaults.filename),
        max_bytes=parser.getint("logging", "max_size_mb", fallback=10) * 1024 * 1024,
        backup_count=max(0, parser.getint("logging", "backups", fallback=defaults.backup_count)),
    )

    unknown = set(scanner.supported_formats) - set(DEFAULT_FORMATS)
    if unknown:
        logger.warning(f"Ignoring unsupported formats in config: {', '.join(sorted(unknown))}")
        scanner.supported_formats = tuple(
            fmt for fmt in scanner.supported_formats if fmt in DEFAULT_FORMATS
        )

    return LecternConfig(
        library=library,
        scanner=scanner,
        extraction=extraction,
        covers=covers,
        logging=logging_config,
    )


def write_default_config(
    config_path: pathlib.Path, library_path: pathlib.Path, library_name: str
) -> None:
    """Write a config.ini holding the defaults for every section."""
    parser = configparser.ConfigParser()

    parser["library"] = {
        "path": str(library_path.expanduser()),
        "name": library_name,
    }
    parser["scanner"] = {
        "interval_seconds": "300",
        "supported_formats": ",".join(DEFAULT_FORMATS),
        "ignore_patterns": ",".join(DEFAULT_IGNORE_PATTERNS),
    }
    parser["extraction"] = {
        "workers": "2",
        "queue_size": "64",
        "batch_size": "100",
        "timeout_seconds": "120",
    }
    parser["covers"] = {
        "width": "280",
        "height": "430",
        "quality": "75",
    }
    parser["logging"] = {
        "level": "INFO",
        "filename": "lectern.log",
        "max_size_mb": "10",
        "backups": "5",
    }

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w") as handle:
        parser.write(handle)

