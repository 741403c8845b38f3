"""
Document loading: raw uploads to text and AI payloads.

PDFs and office formats are partitioned with Unstructured.io; plain text is
decoded directly.
"""
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
import hashlib
import io
import logging
import mimetypes

from contract_engine.ai.backends import DocumentPayload
from contract_engine.exceptions import DocumentLoadError

logger = logging.getLogger(__name__)

TEXT_MEDIA_TYPES = ("text/plain", "text/markdown", "text/csv")


def generate_document_id(filename: str, data: bytes) -> str:
    """Stable document ID from filename stem and content hash."""
    content_hash = hashlib.md5(data).hexdigest()[:12]
    return f"{Path(filename).stem}_{content_hash}"


@dataclass
class Document:
    """A contract document as received from the caller."""
    document_id: str
    filename: str = ""
    data: Optional[bytes] = None
    text: Optional[str] = None
    media_type: Optional[str] = None

    def __post_init__(self):
        if self.data is None and self.text is None:
            raise DocumentLoadError(f"Document {self.document_id} has neither bytes nor text")
        if self.media_type is None:
            guessed, _ = mimetypes.guess_type(self.filename or "")
            self.media_type = guessed or ("text/plain" if self.data is None else "application/pdf")

    @classmethod
    def from_text(cls, text: str, document_id: Optional[str] = None, filename: str = "") -> "Document":
        document_id = document_id or generate_document_id(filename or "document", text.encode("utf-8"))
        return cls(document_id=document_id, filename=filename, text=text, media_type="text/plain")

    @classmethod
    def from_bytes(
        cls,
        data: bytes,
        filename: str,
        document_id: Optional[str] = None,
        media_type: Optional[str] = None,
    ) -> "Document":
        return cls(
            document_id=document_id or generate_document_id(filename, data),
            filename=filename,
            data=data,
            media_type=media_type,
        )

    @classmethod
    def from_path(cls, file_path: str, document_id: Optional[str] = None) -> "Document":
        path = Path(file_path)
        try:
            data = path.read_bytes()
        except OSError as e:
            raise DocumentLoadError(f"Cannot read {file_path}: {e}") from e
        return cls.from_bytes(data, path.name, document_id=document_id)

    @property
    def size_bytes(self) -> int:
        if self.data is not None:
            return len(self.data)
        return len((self.text or "").encode("utf-8"))


class DocumentLoader:
    """
    Convert Documents to text (for classification and patterns) and to AI payloads.

    Args:
        strategy: Unstructured.io partition strategy ("fast", "hi_res", "ocr_only")
        languages: OCR languages
    """

    def __init__(self, strategy: str = "fast", languages=("eng",)):
        self.strategy = strategy
        self.languages = list(languages)

    def load_text(self, document: Document) -> str:
        """
        Return document text, partitioning binary content if needed.

        Raises:
            DocumentLoadError: content cannot be decoded or partitioned
        """
        if document.text is not None:
            return document.text

        if document.media_type in TEXT_MEDIA_TYPES:
            try:
                return document.data.decode("utf-8")
            except UnicodeDecodeError as e:
                raise DocumentLoadError(f"{document.filename} is not valid UTF-8 text: {e}") from e

        text = self._partition(document)
        # Cache for later pipeline stages
        document.text = text
        return text

    def _partition(self, document: Document) -> str:
        try:
            from unstructured.partition.auto import partition
        except ImportError:
            raise ImportError(
                "unstructured is required to extract text from binary documents. "
                "Install with: pip install 'unstructured[pdf]'"
            )

        logger.info(f"Partitioning {document.filename or document.document_id} ({document.media_type})")
        try:
            elements = partition(
                file=io.BytesIO(document.data),
                metadata_filename=document.filename or None,
                content_type=document.media_type,
                strategy=self.strategy,
                languages=self.languages,
            )
        except Exception as e:
            raise DocumentLoadError(
                f"Failed to partition {document.filename or document.document_id}: {e}"
            ) from e

        logger.info(f"Partitioned into {len(elements)} elements")
        return "\n\n".join(str(el) for el in elements if str(el).strip())

    def to_payload(self, document: Document) -> DocumentPayload:
        """Bytes for PDFs (so backends can read layout), text otherwise."""
        if document.data is not None and document.media_type == "application/pdf":
            return DocumentPayload(
                text=document.text,
                data=document.data,
                media_type=document.media_type,
                filename=document.filename,
            )
        return DocumentPayload(
            text=self.load_text(document),
            media_type="text/plain",
            filename=document.filename,
        )
