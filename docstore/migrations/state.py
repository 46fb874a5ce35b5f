"""Persisted completion flags for the layout migration phases."""

from __future__ import annotations

import enum
import json
import threading
import time
from pathlib import Path
from typing import Any, Dict

from .. import logging_manager as log_mgr
from ..fsutils.moves import atomic_write_bytes

logger = log_mgr.get_logger().getChild("migrations.state")

MIGRATIONS_DIR = ".migrations"
STATE_FILE = "state.json"
DOCUMENTS_V1_FLAG = "documentsV1Migrated"
AUDIOBOOKS_V1_FLAG = "audiobooksV1Migrated"
UPDATED_AT_KEY = "updatedAt"
KNOWN_KEYS = frozenset({DOCUMENTS_V1_FLAG, AUDIOBOOKS_V1_FLAG, UPDATED_AT_KEY})


class MigrationPhaseStatus(str, enum.Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class MigrationStateTracker:
    """Read and write ``{root}/.migrations/state.json``.

    Writes go through a temp file and an atomic replace, so concurrent savers
    never produce a torn file; the last writer wins.
    """

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)
        self.path = self.root / MIGRATIONS_DIR / STATE_FILE
        self._lock = threading.Lock()

    def load_raw(self) -> Dict[str, Any]:
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as exc:
            logger.warning(
                "Ignoring unreadable migration state: %s",
                exc,
                extra={"event": "migrations.state.corrupt", "key": str(self.path)},
            )
            return {}
        return payload if isinstance(payload, dict) else {}

    def load(self) -> Dict[str, Any]:
        """Return the known flags, defaulting to ``False`` when absent."""

        raw = self.load_raw()
        return {
            DOCUMENTS_V1_FLAG: raw.get(DOCUMENTS_V1_FLAG) is True,
            AUDIOBOOKS_V1_FLAG: raw.get(AUDIOBOOKS_V1_FLAG) is True,
            UPDATED_AT_KEY: raw.get(UPDATED_AT_KEY) if isinstance(raw.get(UPDATED_AT_KEY), int) else None,
        }

    def has_unknown_keys(self) -> bool:
        return any(key not in KNOWN_KEYS for key in self.load_raw())

    def is_set(self, flag: str) -> bool:
        return bool(self.load().get(flag))

    def save(self, **flags: bool) -> Dict[str, Any]:
        """Merge ``flags`` into the stored state, stamp ``updatedAt`` and persist."""

        unknown = [key for key in flags if key not in KNOWN_KEYS or key == UPDATED_AT_KEY]
        if unknown:
            raise ValueError(f"Unknown migration flags: {unknown}")
        with self._lock:
            current = self.load()
            state = {
                DOCUMENTS_V1_FLAG: current[DOCUMENTS_V1_FLAG],
                AUDIOBOOKS_V1_FLAG: current[AUDIOBOOKS_V1_FLAG],
            }
            state.update({key: bool(value) for key, value in flags.items()})
            state[UPDATED_AT_KEY] = int(time.time() * 1000)
            atomic_write_bytes(self.path, json.dumps(state, indent=2).encode("utf-8"))
        logger.debug("Saved migration state", extra={"event": "migrations.state.saved", "phase": sorted(flags)})
        return state

    def status(self, flag: str, *, legacy_present: bool) -> MigrationPhaseStatus:
        """Report where ``flag``'s phase stands given whether legacy artifacts remain."""

        if not self.path.exists():
            return MigrationPhaseStatus.NOT_STARTED
        if self.is_set(flag) and not legacy_present:
            return MigrationPhaseStatus.COMPLETED
        return MigrationPhaseStatus.IN_PROGRESS


__all__ = [
    "AUDIOBOOKS_V1_FLAG",
    "DOCUMENTS_V1_FLAG",
    "MigrationPhaseStatus",
    "MigrationStateTracker",
]
