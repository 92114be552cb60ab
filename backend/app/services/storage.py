"""Deposit proof storage.

Proof files are written under UPLOAD_DIR and served from
UPLOAD_BASE_URL.  Disk writes run in a worker thread so the event loop
keeps serving requests while a 10 MB PDF lands.
"""

import asyncio
import logging
import mimetypes
import uuid
from pathlib import Path

from app.collection.deposit import ProofAttachment
from app.config import settings

logger = logging.getLogger(__name__)


class ProofStorage:
    def __init__(self, root: str | None = None, base_url: str | None = None):
        self.root = Path(root or settings.upload_dir)
        self.base_url = (base_url or settings.upload_base_url).rstrip("/")

    @staticmethod
    def _write(path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

    async def save(self, folder: str, proof: ProofAttachment) -> str:
        """Store the proof and return its public URL."""
        content_type = proof.content_type.split(";")[0].strip().lower()
        ext = mimetypes.guess_extension(content_type) or Path(proof.filename).suffix
        relative = f"deposits/{folder}/{uuid.uuid4().hex}{ext}"

        await asyncio.to_thread(self._write, self.root / relative, proof.data)
        logger.info(f"Stored deposit proof {relative} ({proof.size} bytes)")
        return f"{self.base_url}/{relative}"

    def _path_for(self, url: str) -> Path:
        if not url.startswith(self.base_url + "/"):
            raise ValueError(f"Not a stored proof URL: {url}")
        path = (self.root / url[len(self.base_url) + 1:]).resolve()
        if not path.is_relative_to(self.root.resolve()):
            raise ValueError(f"Proof URL escapes the upload directory: {url}")
        return path

    async def delete(self, url: str) -> None:
        """Remove a stored proof; a missing file is not an error."""
        path = self._path_for(url)
        await asyncio.to_thread(path.unlink, missing_ok=True)
        logger.info(f"Deleted deposit proof {url}")


def get_proof_storage() -> ProofStorage:
    """FastAPI dependency, overridden in tests with an in-memory store."""
    return ProofStorage()
