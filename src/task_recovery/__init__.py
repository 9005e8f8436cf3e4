"""task-recovery: retry orchestration with circuit breakers and redrive."""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("task-recovery")
except PackageNotFoundError:
    __version__ = "0.1.0"

__all__ = ["__version__"]
