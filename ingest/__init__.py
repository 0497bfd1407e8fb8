"""
Knowledge and inventory ingestion for the Carrera Cars lead bot.

Loaders turn files into rows; the pipeline persists them and indexes
their embeddings in Pinecone.
"""

from .document_loader import DocumentLoader, DocumentRecord
from .inventory_loader import InventoryLoader, VehicleRecord

__all__ = [
    "DocumentLoader",
    "DocumentRecord",
    "InventoryLoader",
    "VehicleRecord",
]
