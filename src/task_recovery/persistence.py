"""Durable file primitives shared by the circuit and log stores.

Uses the temp file -> fsync -> os.replace pattern for whole-record writes
and single-``write`` appends for line-delimited logs, so a crash never
leaves a half-written record behind.
"""

from __future__ import annotations

import contextlib
import os
import tempfile
from typing import TYPE_CHECKING, TypeVar

import structlog
from pydantic import BaseModel, ValidationError

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def atomic_write(path: Path, data: bytes) -> None:
    """Write data atomically using temp file -> fsync -> os.replace.

    Args:
        path: Target file path. Its parent directory must exist.
        data: Bytes to write.

    Raises:
        OSError: If any step of the write fails. The temp file is removed.
    """
    fd, tmp_path = tempfile.mkstemp(
        dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp"
    )
    fd_closed = False
    try:
        os.write(fd, data)
        os.fsync(fd)
        os.close(fd)
        fd_closed = True
        os.replace(tmp_path, str(path))
    except BaseException:
        if not fd_closed:
            os.close(fd)
        with contextlib.suppress(FileNotFoundError):
            os.unlink(tmp_path)
        raise


def append_line(path: Path, model: BaseModel) -> None:
    """Append one model as a single JSON line and flush it to disk.

    Args:
        path: JSONL file (created with its parent directories if needed).
        model: The record to serialize.

    Raises:
        OSError: If the file cannot be created or written.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    line = model.model_dump_json() + "\n"
    with path.open("a", encoding="utf-8") as f:
        f.write(line)
        f.flush()
        os.fsync(f.fileno())


def iter_lines(path: Path, model_cls: type[ModelT]) -> Iterator[ModelT]:
    """Yield every valid record from a JSONL file, in file order.

    Blank lines are ignored. Lines that fail to decode or validate are
    skipped with a warning so a single torn or hand-edited line does not
    hide the rest of the log.

    Args:
        path: JSONL file. A missing file yields nothing.
        model_cls: Pydantic model used to validate each line.

    Yields:
        Parsed records.
    """
    if not path.exists():
        return

    with path.open("rb") as f:
        for lineno, raw in enumerate(f, start=1):
            stripped = raw.strip()
            if not stripped:
                continue
            try:
                record = model_cls.model_validate_json(stripped.decode("utf-8"))
            except (UnicodeDecodeError, ValidationError):
                logger.warning("corrupt_log_line", path=str(path), line=lineno)
                continue
            yield record
