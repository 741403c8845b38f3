"""Ingestion modules."""
from .document_loader import Document, DocumentLoader, generate_document_id

__all__ = [
    "Document",
    "DocumentLoader",
    "generate_document_id",
]
