"""
Ledger persistence boundary.

The scoring code never touches storage.  A session loads its tracker once with
``load_tracker(store)`` and writes it back with ``save_tracker(store, tracker)``.
Both functions absorb storage failures: a broken or unreadable store must not
stop a scan, so load falls back to an empty ledger and save reports ``False``.

``TrackerStore`` implementations:
  - ``JsonFileTrackerStore`` (this module): one JSON document on disk.
  - ``SqliteTrackerStore`` (``market_intel.db.repositories.ledger_repo``).
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional, Protocol

from market_intel.adaptive.tracker import PerformanceTracker

logger = logging.getLogger(__name__)


class TrackerStore(Protocol):
    def load(self) -> Optional[PerformanceTracker]:
        """Return the stored tracker, or ``None`` when nothing is stored."""
        ...

    def save(self, tracker: PerformanceTracker) -> None:
        ...


class JsonFileTrackerStore:
    """Stores the ledger as the ``PerformanceTracker.to_dict()`` JSON document."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def load(self) -> Optional[PerformanceTracker]:
        if not self.path.exists():
            return None
        return PerformanceTracker.from_dict(json.loads(self.path.read_text()))

    def save(self, tracker: PerformanceTracker) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(tracker.to_dict(), indent=2))
        tmp.replace(self.path)


def load_tracker(store: TrackerStore) -> PerformanceTracker:
    """Load the ledger; any storage failure yields a fresh empty tracker."""
    try:
        tracker = store.load()
    except Exception as exc:
        logger.warning(
            "Failed to load performance ledger (%s: %s); starting empty.",
            type(exc).__name__, exc,
        )
        return PerformanceTracker()

    if tracker is None:
        logger.info("No stored performance ledger; starting empty.")
        return PerformanceTracker()

    logger.info("Loaded performance ledger: %d record(s)", len(tracker))
    return tracker


def save_tracker(store: TrackerStore, tracker: PerformanceTracker) -> bool:
    """Persist the ledger.

    Returns:
        ``True`` on success, ``False`` if the store raised (the error is logged).
    """
    try:
        store.save(tracker)
    except Exception:
        logger.exception("Failed to save performance ledger (%d records)", len(tracker))
        return False
    logger.info("Saved performance ledger: %d record(s)", len(tracker))
    return True
