"""JSON file storage for :class:`PoolState`.

The file holds ``{schemaVersion, updatedAt, data}``. Writes go to a temp file
in the same directory and are moved into place with ``os.replace``, so a
reader never sees a half-written document.

One process per state file; there is no locking here.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from bch_stealth.config.settings import Network
from bch_stealth.errors.stealth_errors import ValidationError
from bch_stealth.state.migrations import CURRENT_SCHEMA_VERSION, migrate
from bch_stealth.state.models import PoolState, utc_now_iso

logger = logging.getLogger(__name__)


class FileStateStore:
    """Load and atomically save the pool state document."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def exists(self) -> bool:
        return self._path.exists()

    def load(self) -> PoolState | None:
        """Read, migrate and validate the state file; ``None`` if absent.

        A file written by an older schema is rewritten in the current layout.

        Raises:
            ValidationError: If the file is not valid JSON or fails the schema.
        """
        if not self._path.exists():
            return None
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            msg = f"state file {self._path} is not valid JSON: {exc}"
            raise ValidationError(msg) from exc
        if not isinstance(raw, dict):
            msg = f"state file {self._path} must contain a JSON object"
            raise ValidationError(msg)

        envelope, migrated = migrate(raw)
        try:
            state = PoolState.model_validate(envelope["data"])
        except PydanticValidationError as exc:
            msg = f"state file {self._path} does not match the state schema: {exc}"
            raise ValidationError(msg) from exc

        if migrated:
            self.save(state)
            logger.info("Rewrote %s at schema v%d", self._path, CURRENT_SCHEMA_VERSION)
        return state

    def load_or_empty(self, network: Network) -> PoolState:
        state = self.load()
        if state is None:
            return PoolState(network=network)
        return state

    def save(self, state: PoolState) -> None:
        """Atomically replace the state file with *state*."""
        envelope = {
            "schemaVersion": CURRENT_SCHEMA_VERSION,
            "updatedAt": utc_now_iso(),
            "data": state.to_json_dict(),
        }
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=str(self._path.parent), prefix=f".{self._path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(envelope, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self._path)
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise
        logger.debug("Saved state to %s", self._path)
