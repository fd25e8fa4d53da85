# Copyright 2025 Ben Mensi
# SPDX-License-Identifier: Apache-2.0

"""Minimal JSONL event log for scrippet runs."""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class EventClient:
    """Append-only JSONL log of scrippet run events.

    Writes are best effort: a failure is logged and the run continues.
    """

    def __init__(self, log_path: Path):
        self.log_path = log_path

    def log_event(
        self,
        event_type: str,
        correlation_id: str,
        status: str,
        scrippet_id: str,
        payload: Optional[Dict[str, Any]] = None,
        error_message: Optional[str] = None,
    ) -> None:
        """Append one event to the log."""
        event = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event_type": event_type,
            "correlation_id": correlation_id,
            "status": status,
            "scrippet_id": scrippet_id,
        }
        if payload:
            event["payload"] = payload
        if error_message:
            event["error_message"] = error_message

        try:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.log_path, "a") as f:
                f.write(json.dumps(event) + "\n")
        except OSError as e:
            logger.warning(f"Could not write event {event_type} to {self.log_path}: {e}")

    def recent(self, limit: int = 20, scrippet_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Read the most recent events, newest last."""
        if not self.log_path.exists():
            return []

        events = []
        with open(self.log_path) as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    event = json.loads(line)
                except json.JSONDecodeError:
                    # Partial line from an interrupted write
                    continue
                if scrippet_id and event.get("scrippet_id") != scrippet_id:
                    continue
                events.append(event)
        return events[-limit:] if limit else events
