"""
Document Content Provider

Loads the solicitation text a run is seeded with. Text extraction from
uploaded binary formats happens upstream; this provider serves plain text.
"""

import logging
from pathlib import Path
from typing import Dict, Protocol, Union

from proposal_engine.errors import DocumentNotFound, DocumentParseError, DocumentUnauthorized
from proposal_engine.state import DocumentPayload

logger = logging.getLogger(__name__)

TEXT_SUFFIXES = (".txt", ".md")


class DocumentProvider(Protocol):
    async def load_document(self, document_id: str) -> DocumentPayload:
        """
        Raises:
            DocumentNotFound, DocumentUnauthorized, DocumentParseError
        """
        ...


class LocalDocumentProvider:
    """Serves UTF-8 text files stored under a root directory."""

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root).resolve()

    def _resolve(self, document_id: str) -> Path:
        candidate = (self.root / document_id).resolve()
        if self.root != candidate and self.root not in candidate.parents:
            raise DocumentUnauthorized(f"Document '{document_id}' is outside the document store")
        if candidate.suffix:
            return candidate
        for suffix in TEXT_SUFFIXES:
            with_suffix = candidate.with_suffix(suffix)
            if with_suffix.exists():
                return with_suffix
        return candidate

    async def load_document(self, document_id: str) -> DocumentPayload:
        path = self._resolve(document_id)
        if not path.is_file():
            raise DocumentNotFound(f"Document '{document_id}' not found")
        try:
            text = path.read_text(encoding="utf-8")
        except UnicodeDecodeError as e:
            raise DocumentParseError(f"Document '{document_id}' is not UTF-8 text: {e}") from e
        except PermissionError as e:
            raise DocumentUnauthorized(f"Document '{document_id}' is not readable") from e

        if not text.strip():
            raise DocumentParseError(f"Document '{document_id}' is empty")

        logger.info("Loaded document %s (%d chars)", document_id, len(text))
        return DocumentPayload(
            document_id=document_id,
            text=text,
            metadata={"source": "local", "filename": path.name, "size": len(text)},
        )


class InMemoryDocumentProvider:
    """Documents held in a dict; used for inline seeds and tests."""

    def __init__(self, documents: Dict[str, str] = None):
        self.documents = dict(documents or {})

    async def load_document(self, document_id: str) -> DocumentPayload:
        if document_id not in self.documents:
            raise DocumentNotFound(f"Document '{document_id}' not found")
        text = self.documents[document_id]
        if not text or not text.strip():
            raise DocumentParseError(f"Document '{document_id}' is empty")
        return DocumentPayload(document_id=document_id, text=text, metadata={"source": "memory"})
