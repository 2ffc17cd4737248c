# ==============================================================================
# JSONL File Collector
# ==============================================================================
"""
Collector that appends delivered events to a local JSON Lines log.

Each line is one event in its camelCase wire form. The log is the durable
record the ``beacon analyze`` commands replay to rebuild experiment, funnel
and cohort state.
"""

import json
import logging
import threading
from collections.abc import Iterator
from pathlib import Path

from beacon.base import Collector
from beacon.core.models import Event, Session
from beacon.utils.config import get_settings

logger = logging.getLogger(__name__)


class JsonlFileCollector(Collector):
    """Append event batches to a JSONL file."""

    def __init__(self, path: Path | None = None):
        self._path = path or get_settings().tracker.event_log_path
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def deliver(self, batch: list[Event], session: Session, timeout: float | None = None) -> bool:
        lines = "".join(json.dumps(event.to_message()) + "\n" for event in batch)
        try:
            with self._lock:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                with self._path.open("a", encoding="utf-8") as fh:
                    fh.write(lines)
        except OSError as e:
            logger.error("Failed to append %d events to %s: %s", len(batch), self._path, e)
            return False
        return True


def read_event_log(path: Path) -> Iterator[Event]:
    """
    Read events back from a JSONL event log.

    Malformed lines are skipped with a warning.

    Args:
        path: Path to the log written by JsonlFileCollector

    Yields:
        Event instances in file order
    """
    with path.open(encoding="utf-8") as fh:
        for line_no, line in enumerate(fh, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                yield Event.from_message(json.loads(line))
            except ValueError as e:
                logger.warning("Skipping malformed event on line %d of %s: %s", line_no, path, e)
