"""Local state storage: a small JSON key/value file per session.

Plays the part browser localStorage plays for a client-side store: values are
strings-keyed JSON documents written under a fixed namespace key and read
back on the next start ("hydration").
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from dexbit.utils.logger import logger


class LocalStateStorage:
    """JSON-file backed get/set/remove of named state snapshots."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def get_item(self, name: str) -> Any | None:
        """Return the stored value for ``name`` or None."""
        return self._read().get(name)

    def set_item(self, name: str, value: Any) -> None:
        data = self._read()
        data[name] = value
        self._write(data)

    def remove_item(self, name: str) -> None:
        data = self._read()
        if data.pop(name, None) is not None:
            self._write(data)

    def _read(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            return json.loads(self.path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as e:
            # Corrupted file: start from an empty snapshot
            logger.warning("[State] Ignoring unreadable %s: %s", self.path.name, e)
            return {}

    def _write(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(".tmp")
        tmp.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")
        tmp.replace(self.path)
