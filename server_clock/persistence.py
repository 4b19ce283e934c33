"""
Persisted Sync State
====================

Best-effort JSON mirror of the last good synchronization, used only as a
warm start. Layout:

    {"lastTargetUrl": str, "lastSyncLocalTime": int, "lastOffsetMs": float}

A missing file, an unreadable file, or any missing key reads as empty.
Storage failures are logged and never break synchronization.
"""

import json
import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

logger = logging.getLogger(__name__)


@dataclass
class PersistedSync:
    target_url: str
    sync_local_time: int
    offset_ms: float


class StateStore:
    """Key-value JSON file holding the last good sync.

    Args:
        path: File location; parent directories are created on save.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def load(self) -> Optional[PersistedSync]:
        try:
            with open(self.path, "r", encoding="utf-8") as handle:
                payload = json.load(handle)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable sync state {self.path}: {e}")
            return None

        if not isinstance(payload, dict):
            return None
        try:
            target = str(payload["lastTargetUrl"]).strip()
            sync_time = int(payload["lastSyncLocalTime"])
            offset = float(payload["lastOffsetMs"])
        except (KeyError, TypeError, ValueError, OverflowError):
            return None
        if not target or not math.isfinite(offset):
            return None
        return PersistedSync(target_url=target, sync_local_time=sync_time, offset_ms=offset)

    def save(self, state: PersistedSync):
        payload = {
            "lastTargetUrl": state.target_url,
            "lastSyncLocalTime": int(state.sync_local_time),
            "lastOffsetMs": state.offset_ms,
        }
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as handle:
                json.dump(payload, handle)
        except OSError as e:
            logger.warning(f"Could not persist sync state to {self.path}: {e}")

    def clear(self):
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove sync state {self.path}: {e}")
