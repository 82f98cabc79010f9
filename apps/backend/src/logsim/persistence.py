"""Optional JSON snapshot persistence with atomic writes."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Generic, Optional, TypeVar

from pydantic import BaseModel

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def atomic_write_text(path: Path, content: str) -> None:
    """Atomically write text content to a file using replace-on-commit."""
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(
        prefix=f".{path.name}.",
        suffix=".tmp",
        dir=str(path.parent),
    )
    tmp_path = Path(tmp_name)

    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())

        os.replace(tmp_path, path)
    finally:
        tmp_path.unlink(missing_ok=True)


class JsonSnapshot(Generic[ModelT]):
    """Stores a whole collection of models as one JSON array file.

    With ``path=None`` every operation is a no-op, which keeps the stores
    purely in-memory.
    """

    def __init__(self, path: Optional[Path], model: type[ModelT]):
        self.path = path
        self.model = model

    @property
    def enabled(self) -> bool:
        return self.path is not None

    def load(self) -> list[ModelT]:
        if self.path is None or not self.path.exists():
            return []
        data = json.loads(self.path.read_text(encoding="utf-8"))
        items = [self.model.model_validate(item) for item in data]
        logger.info("Loaded %d %s record(s) from %s", len(items), self.model.__name__, self.path)
        return items

    def save(self, items: list[ModelT]) -> None:
        if self.path is None:
            return
        payload = [item.model_dump(mode="json") for item in items]
        atomic_write_text(self.path, json.dumps(payload, indent=2))
