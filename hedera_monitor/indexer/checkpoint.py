"""
Watermark Checkpoint

Persists the committed watermark to a small JSON file so a restarted
monitor resumes where it stopped instead of re-reading the lookback window.
"""

import json
import logging
import os
import time
from pathlib import Path
from typing import Dict, Optional

from ..types import format_timestamp, parse_timestamp


class WatermarkCheckpoint:
    """
    JSON checkpoint: {"watermark": "S.N", "timestamp": unix_seconds}.

    Usage:
        checkpoint = WatermarkCheckpoint("monitor_checkpoint.json")
        start = checkpoint.load()   # None when missing/unreadable
        checkpoint.save(cursor.watermark)
    """

    def __init__(self, path: str):
        self.path = Path(path)
        self._logger = logging.getLogger("WatermarkCheckpoint")
        self._last_saved: Optional[int] = None

    def load(self) -> Optional[int]:
        if not self.path.exists():
            return None
        try:
            with open(self.path, 'r') as f:
                data = json.load(f)
            watermark = parse_timestamp(data["watermark"])
        except (OSError, ValueError, KeyError, TypeError) as e:
            self._logger.warning(f"Failed to load checkpoint {self.path}: {e}")
            return None

        self._last_saved = watermark
        self._logger.info(f"Loaded checkpoint: watermark {format_timestamp(watermark)}")
        return watermark

    def save(self, watermark: int) -> bool:
        """Write the watermark if it moved. Returns True when written."""
        if watermark == self._last_saved:
            return False

        data: Dict = {
            "watermark": format_timestamp(watermark),
            "timestamp": time.time(),
        }
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            with open(tmp_path, 'w') as f:
                json.dump(data, f)
            os.replace(tmp_path, self.path)
        except OSError as e:
            self._logger.error(f"Failed to save checkpoint: {e}")
            return False

        self._last_saved = watermark
        return True
