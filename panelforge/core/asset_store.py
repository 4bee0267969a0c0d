"""
Asset storage for rendered panels.

Rendered bytes are persisted once per successful render and referred to by an
opaque handle from then on.
"""

import asyncio
import hashlib
import mimetypes
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Tuple

from .logging_config import get_logger

logger = get_logger("core.asset_store")


def _content_key(data: bytes, mime_type: str) -> str:
    digest = hashlib.sha256(data).hexdigest()[:16]
    extension = mimetypes.guess_extension(mime_type) or ".bin"
    return f"{digest}{extension}"


class ObjectStore(ABC):
    """Durable storage boundary; handles are opaque to callers."""

    @abstractmethod
    async def persist(self, data: bytes, mime_type: str) -> str:
        """Store bytes and return a handle."""
        pass

    @abstractmethod
    async def load(self, handle: str) -> bytes:
        """Return the bytes behind a handle."""
        pass


class InMemoryObjectStore(ObjectStore):
    """Keeps assets in a dict. Used by dry runs and tests."""

    def __init__(self):
        self._objects: Dict[str, Tuple[bytes, str]] = {}

    async def persist(self, data: bytes, mime_type: str) -> str:
        handle = f"mem://{_content_key(data, mime_type)}"
        self._objects[handle] = (data, mime_type)
        return handle

    async def load(self, handle: str) -> bytes:
        try:
            return self._objects[handle][0]
        except KeyError:
            raise FileNotFoundError(handle)

    def __len__(self) -> int:
        return len(self._objects)


class LocalObjectStore(ObjectStore):
    """Writes assets under a directory, content-addressed."""

    def __init__(self, root: Path):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    async def persist(self, data: bytes, mime_type: str) -> str:
        path = self.root / _content_key(data, mime_type)
        if not path.exists():
            await asyncio.to_thread(path.write_bytes, data)
            logger.debug(f"Stored {len(data)} bytes at {path}")
        return str(path)

    async def load(self, handle: str) -> bytes:
        return await asyncio.to_thread(Path(handle).read_bytes)
