from __future__ import annotations

import logging
import secrets
import shutil
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

logger = logging.getLogger("scratch")


class ScratchSpace:
    """Per-invocation temporary files under one base directory.

    Every name embeds a nanosecond timestamp and a random token, so
    concurrent invocations of the same command never share a path.
    """

    def __init__(self, base_dir: str | Path) -> None:
        self._base = Path(base_dir)

    @property
    def base_dir(self) -> Path:
        return self._base

    def unique_name(self, tag: str, suffix: str = "") -> str:
        if suffix and not suffix.startswith("."):
            suffix = f".{suffix}"
        return f"{tag}_{time.time_ns()}_{secrets.token_hex(4)}{suffix}"

    @contextmanager
    def file(self, tag: str, suffix: str = "") -> Iterator[Path]:
        self._base.mkdir(parents=True, exist_ok=True)
        path = self._base / self.unique_name(tag, suffix)
        try:
            yield path
        finally:
            try:
                path.unlink(missing_ok=True)
            except OSError:
                logger.warning("Failed to remove scratch file %s", path, exc_info=True)

    @contextmanager
    def directory(self, tag: str) -> Iterator[Path]:
        self._base.mkdir(parents=True, exist_ok=True)
        path = self._base / self.unique_name(tag)
        path.mkdir()
        try:
            yield path
        finally:
            shutil.rmtree(path, ignore_errors=True)
