"""Signal delivery channel.

The executor polls a JSON document shaped ``{"bestSignal": {...}}``; Scout
rewrites it every time a new signal is recorded or resolved.
"""

import json
import logging
import pathlib
from typing import Optional

from scout.strategy.models import Signal

logger = logging.getLogger("scout.lifecycle")


class SignalPublisher:
    """Keeps the latest published payload in memory and on disk.

    Args:
        feed_path: JSON file read by the executor; ``None`` keeps it in memory only.
    """

    def __init__(self, feed_path: Optional[str] = None) -> None:
        self._path = pathlib.Path(feed_path) if feed_path else None
        self._latest: Optional[dict] = None

    @property
    def latest(self) -> Optional[dict]:
        return self._latest

    def feed(self) -> dict:
        """The delivery document as the executor sees it."""
        return {"bestSignal": self._latest}

    def publish(self, signal: Signal) -> dict:
        self._latest = signal.to_payload()
        self._write()
        return self._latest

    def clear(self) -> None:
        self._latest = None
        self._write()

    def _write(self) -> None:
        if self._path is None:
            return
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self._path.with_suffix(self._path.suffix + ".tmp")
            tmp.write_text(json.dumps(self.feed()), encoding="utf-8")
            tmp.replace(self._path)
        except OSError as exc:
            logger.error("Failed to write signal feed %s: %s", self._path, exc)
