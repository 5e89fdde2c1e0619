"""
Document Store

Raw bid file storage. Local refs live under the documents directory;
http(s) refs are fetched with httpx.
"""

import logging
import re
import uuid
from pathlib import Path
from typing import Optional, Iterable

import httpx

from config.settings import settings
from services.exceptions import SourceUnavailable

logger = logging.getLogger("bidvet.services.storage")


def _safe_name(file_name: str) -> str:
    """Strip directory parts and unsafe characters from an uploaded file name."""
    name = Path(file_name).name
    name = re.sub(r"[^A-Za-z0-9._-]+", "_", name)
    return name or "document"


def is_remote_ref(ref: str) -> bool:
    return ref.startswith("http://") or ref.startswith("https://")


class DocumentStore:
    """
    Stores uploaded bid documents.

    Storage structure (local):
    - data/documents/{project_id}/
        - {uuid}_{file_name}    # original upload
    """

    def __init__(self, root: Optional[Path] = None, timeout: Optional[float] = None):
        self.root = Path(root) if root else settings.documents_dir
        self.root.mkdir(parents=True, exist_ok=True)
        self.timeout = timeout or settings.download_timeout_seconds

    def _resolve(self, ref: str) -> Path:
        path = (self.root / ref).resolve()
        if self.root.resolve() not in path.parents:
            raise SourceUnavailable(f"Invalid document reference: {ref}")
        return path

    async def get_file(self, ref: str) -> bytes:
        """
        Fetch a document's bytes.

        Args:
            ref: Local reference returned by put_file, or an http(s) URL

        Returns:
            File content

        Raises:
            SourceUnavailable: When the file cannot be read or downloaded
        """
        if is_remote_ref(ref):
            try:
                async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True) as client:
                    response = await client.get(ref)
                    response.raise_for_status()
                    return response.content
            except httpx.HTTPError as e:
                raise SourceUnavailable(f"Failed to download document: {e}") from e

        path = self._resolve(ref)
        try:
            return path.read_bytes()
        except OSError as e:
            raise SourceUnavailable(f"Document not found in storage: {ref}") from e

    async def put_file(
        self,
        content: bytes,
        file_name: str,
        project_id: Optional[str] = None
    ) -> str:
        """Save a document and return its storage reference."""
        folder = str(project_id) if project_id else "unassigned"
        ref = f"{folder}/{uuid.uuid4().hex[:12]}_{_safe_name(file_name)}"
        path = self._resolve(ref)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        logger.debug(f"Stored {len(content)} bytes as {ref}")
        return ref

    async def delete_files(self, refs: Iterable[str]) -> int:
        """Delete stored documents. Remote refs are not owned here and are skipped."""
        deleted = 0
        for ref in refs:
            if is_remote_ref(ref):
                logger.warning(f"Skipping delete of remote document {ref}")
                continue
            path = self._resolve(ref)
            if path.exists():
                path.unlink()
                deleted += 1
        return deleted


# Module-level instance
_store: Optional[DocumentStore] = None


def get_store() -> DocumentStore:
    """Get or create the document store instance."""
    global _store
    if _store is None:
        _store = DocumentStore()
    return _store
