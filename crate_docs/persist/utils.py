"""Filesystem helpers shared by the cache and the downloader."""

import os
import shutil
from pathlib import Path
from typing import Iterable

from .paths import VCS_DIRS

_UNITS = ["B", "KB", "MB", "GB", "TB"]


def format_bytes(num_bytes: int) -> str:
    """
    Format a byte count with binary units.

    Args:
        num_bytes: Size in bytes

    Returns:
        "0 B", "1 KB", "1.50 KB", ... (two decimals only when not integral)
    """
    if num_bytes <= 0:
        return "0 B"

    size = float(num_bytes)
    unit = 0
    while size >= 1024 and unit < len(_UNITS) - 1:
        size /= 1024
        unit += 1

    if size == int(size):
        return f"{int(size)} {_UNITS[unit]}"
    return f"{size:.2f} {_UNITS[unit]}"


def calculate_dir_size(path: Path) -> int:
    """Total size in bytes of all regular files under path (symlinks not followed)."""
    if not path.exists():
        return 0

    total = 0
    for dirpath, _dirnames, filenames in os.walk(path):
        for filename in filenames:
            file_path = Path(dirpath) / filename
            if file_path.is_symlink():
                continue
            total += file_path.stat().st_size
    return total


def copy_directory_contents(
    src: Path,
    dst: Path,
    exclude: Iterable[str] = VCS_DIRS,
) -> None:
    """
    Recursively copy src into dst, skipping excluded directory names.

    Args:
        src: Source directory
        dst: Destination directory (created if missing)
        exclude: Directory names skipped at any depth
    """
    excluded = set(exclude)
    dst.mkdir(parents=True, exist_ok=True)

    for entry in src.iterdir():
        target = dst / entry.name
        if entry.is_dir() and not entry.is_symlink():
            if entry.name in excluded:
                continue
            copy_directory_contents(entry, target, excluded)
        elif entry.is_file():
            shutil.copy2(entry, target)
