"""Packaging of function source code into deployable zip archives."""

from __future__ import annotations

import io
import zipfile
from pathlib import Path
from typing import Protocol

from nimbus.lib.errors import ValidationError

_SKIP_DIRS = frozenset({"__pycache__", ".git", ".venv", "node_modules", ".pytest_cache"})


class CodeBundler(Protocol):
    """Produces the archive uploaded as a function's code."""

    def bundle(self, source: Path) -> bytes:
        """Return zip archive bytes for a source file or directory."""
        ...


class ZipBundler:
    """Zip a single module or a directory tree.

    A file is stored at the archive root under its own name. A directory is
    stored with paths relative to it, skipping caches and VCS metadata.
    """

    def __init__(self) -> None:
        self._cache: dict[Path, bytes] = {}

    def bundle(self, source: Path) -> bytes:
        """Zip ``source``, reusing the archive when the same path repeats."""
        source = source.resolve()
        if source in self._cache:
            return self._cache[source]
        if not source.exists():
            raise ValidationError(
                field="code",
                message="Function source does not exist",
                expected="an existing file or directory",
                actual=str(source),
            )

        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as archive:
            if source.is_file():
                archive.write(source, source.name)
            else:
                for path in sorted(source.rglob("*")):
                    relative = path.relative_to(source)
                    if any(part in _SKIP_DIRS for part in relative.parts):
                        continue
                    if path.is_file() and path.suffix != ".pyc":
                        archive.write(path, relative.as_posix())

        self._cache[source] = buffer.getvalue()
        return self._cache[source]
