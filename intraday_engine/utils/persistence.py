"""
State persistence utilities.

The live engine must survive restarts: open positions and the trade
ledger are written to ``live-state.json`` and the trimmed price history
of each day to ``price-history/<date>.json``.  This module provides the
JSON load/save functions and a debounced writer that skips a save when
the previous one was too recent, unless the caller forces it.
"""

from __future__ import annotations

import json
import logging
import os
import time
from pathlib import Path
from typing import Any, Callable, Dict, Optional


logger = logging.getLogger(__name__)


def load_state(path: str) -> Optional[Dict[str, Any]]:
    """Load a JSON state file.

    Parameters
    ----------
    path : str
        Path to the JSON file.

    Returns
    -------
    dict or None
        The state dictionary if the file exists and holds a JSON object,
        otherwise `None`.
    """
    file_path = Path(path)
    if not file_path.exists():
        return None
    with file_path.open("r", encoding="utf-8") as fh:
        data = json.load(fh)
    return data if isinstance(data, dict) else None


def save_state(path: str, state: Dict[str, Any]) -> None:
    """Write a JSON state file to disk.

    The document is written to a temporary file next to `path` and
    moved into place, so readers never see a partially written file.

    Parameters
    ----------
    path : str
        Path to the output file.
    state : dict
        Arbitrary state dictionary.  Must be serialisable to JSON.
    """
    file_path = Path(path)
    file_path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = file_path.with_name(f".{file_path.name}.tmp")
    try:
        with tmp_path.open("w", encoding="utf-8") as fh:
            json.dump(state, fh, ensure_ascii=False, indent=2, sort_keys=True)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_path, file_path)
    except OSError:
        if tmp_path.exists():
            tmp_path.unlink()
        raise


class DebouncedJsonWriter:
    """Write a JSON document at most once per interval.

    Parameters
    ----------
    path : str
        Target file.
    interval_seconds : float
        Minimum time between two unforced writes.
    clock : callable, optional
        Monotonic clock in seconds; injectable for tests.
    """

    def __init__(self, path: str, interval_seconds: float,
                 clock: Callable[[], float] = time.monotonic) -> None:
        self.path = str(path)
        self.interval_seconds = float(interval_seconds)
        self._clock = clock
        self._last_write: Optional[float] = None
        self.dirty = False

    def mark_dirty(self) -> None:
        self.dirty = True

    def due(self) -> bool:
        if self._last_write is None:
            return True
        return self._clock() - self._last_write >= self.interval_seconds

    def flush(self, build: Callable[[], Dict[str, Any]], force: bool = False) -> bool:
        """Write ``build()`` if forced, or if dirty and the interval elapsed.

        Returns `True` when the file was written.  I/O errors propagate
        and leave the writer dirty so the next flush retries.
        """
        if not force and not (self.dirty and self.due()):
            return False
        save_state(self.path, build())
        self._last_write = self._clock()
        self.dirty = False
        logger.debug("Saved %s", self.path)
        return True
