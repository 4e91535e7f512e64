"""Append-only log of past send invocations."""

from __future__ import annotations

import json
import os
from datetime import datetime
from typing import Any, Dict, List

from .logger_config import get_logger

logger = get_logger("history")


class SubmissionHistory:
    """Stores one JSON object per line, newest last."""

    def __init__(self, path: str) -> None:
        self.path = os.path.expanduser(path)

    def append(self, entry: Dict[str, Any]) -> None:
        record = {"recorded_at": datetime.now().isoformat(timespec="seconds"), **entry}
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(json.dumps(record, ensure_ascii=False) + "\n")
        logger.debug(f"Recorded submission history entry in {self.path}")

    def entries(self) -> List[Dict[str, Any]]:
        if not os.path.exists(self.path):
            return []
        with open(self.path, "r", encoding="utf-8") as f:
            return [json.loads(line) for line in f if line.strip()]
