"""Log file discovery on the host filesystem."""
from __future__ import annotations

import logging
import os
import sys
from datetime import date, datetime
from pathlib import Path

from .models import LogFileConfig

logger = logging.getLogger(__name__)

OS_FAMILIES = ("docker", "linux", "windows", "macos")


def detect_os_family() -> str:
    """Return ``docker``, ``windows``, ``macos`` or ``linux`` for the current host."""
    if os.path.exists("/.dockerenv"):
        return "docker"
    if sys.platform.startswith("win"):
        return "windows"
    if sys.platform == "darwin":
        return "macos"
    return "linux"


def default_log_paths(config: LogFileConfig, family: str | None = None) -> list[str]:
    """Vendor default log directories for ``family``, with ``~`` and env vars expanded."""
    family = family or detect_os_family()
    return [os.path.expandvars(os.path.expanduser(p)) for p in config.default_paths.for_family(family)]


def discover_log_files(directory: str | Path, config: LogFileConfig) -> list[Path]:
    """Files in ``directory`` matching any of the vendor's patterns, oldest first."""
    root = Path(directory)
    if not root.is_dir():
        logger.debug("Log directory %s does not exist", root)
        return []
    found: dict[Path, None] = {}
    for pattern in config.file_patterns:
        for path in root.glob(pattern):
            if path.is_file():
                found[path] = None
    return sorted(found, key=lambda p: (p.stat().st_mtime, p.name))


def rotation_date(filename: str, config: LogFileConfig) -> date | None:
    """Date encoded in a rotated log file name, or None for the live file."""
    if config.date_pattern is None:
        return None
    m = config.date_pattern.search(filename)
    if not m:
        return None
    token = m.group(1).replace("-", "")
    try:
        return datetime.strptime(token, "%Y%m%d").date()
    except ValueError:
        logger.debug("Unparsable rotation date in %s", filename)
        return None
