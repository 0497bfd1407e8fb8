"""
Knowledge Retriever for the Carrera Cars lead bot.

Ranks knowledge documents (per tenant) and unsold inventory against a
query embedding, and keeps both corpora indexed when rows change.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from database.models import InventoryItem, KnowledgeDocument
from database.repositories import DocumentRepository, InventoryRepository
from .embedder import EmbeddingService
from .pinecone_client import PineconeClient

logger = logging.getLogger(__name__)

DEFAULT_TOP_K = 3


@dataclass
class RetrievalResult:
    """Top-K hits from each corpus, most similar first."""
    documents: List[KnowledgeDocument] = field(default_factory=list)
    items: List[InventoryItem] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.documents and not self.items


class KnowledgeRetriever:
    """
    Two-corpus retriever over the vector index.

    The index ranks by cosine similarity with the metadata filter applied
    first; hits are then re-loaded from the database, so a document of
    another tenant or an item sold after indexing never reaches the prompt.
    """

    def __init__(self, vector_index: PineconeClient, top_k: int = DEFAULT_TOP_K):
        self.vector_index = vector_index
        self.top_k = top_k

    async def retrieve(
        self,
        session: AsyncSession,
        query_embedding: List[float],
        tenant_id: str,
    ) -> RetrievalResult:
        documents = await self._retrieve_documents(session, query_embedding, tenant_id)
        items = await self._retrieve_inventory(session, query_embedding)
        logger.info(
            f"Retrieved {len(documents)} documents and {len(items)} vehicles",
            extra={"tenant_id": tenant_id},
        )
        return RetrievalResult(documents=documents, items=items)

    async def _query(self, embedding: List[float], namespace: str, flt: Dict[str, Any]) -> List[str]:
        matches = await asyncio.to_thread(
            self.vector_index.query,
            embedding=embedding,
            top_k=self.top_k,
            namespace=namespace,
            filter=flt,
        )
        return [m.id for m in matches[: self.top_k]]

    async def _retrieve_documents(
        self, session: AsyncSession, embedding: List[float], tenant_id: str
    ) -> List[KnowledgeDocument]:
        try:
            ids = await self._query(
                embedding, PineconeClient.DOCUMENTS_NAMESPACE, {"tenant_id": {"$eq": tenant_id}}
            )
            return await DocumentRepository(session).get_by_ids(ids, tenant_id)
        except Exception as e:
            logger.warning(f"Document retrieval failed, continuing without documents: {e}")
            return []

    async def _retrieve_inventory(
        self, session: AsyncSession, embedding: List[float]
    ) -> List[InventoryItem]:
        try:
            ids = await self._query(
                embedding, PineconeClient.INVENTORY_NAMESPACE, {"sold": {"$eq": False}}
            )
            return await InventoryRepository(session).get_unsold_by_ids(ids)
        except Exception as e:
            logger.warning(f"Inventory retrieval failed, continuing without vehicles: {e}")
            return []


def inventory_embedding_text(item: InventoryItem) -> str:
    """Attribute description used to embed an inventory item; absent attributes are skipped."""
    fields = [
        ("Marca", item.marca),
        ("Modelo", item.modelo),
        ("Versión", item.version),
        ("Motor", item.motor),
        ("Carrocería", item.carroceria),
        ("Puertas", item.puertas),
        ("Transmisión", item.transmision),
        ("Color", item.color),
        ("Kilómetros", item.kilometros),
        ("Tipo", item.type),
        ("Precio", item.precio_venta),
        ("Descripción", item.description),
    ]
    return ". ".join(f"{label}: {value}" for label, value in fields if value not in (None, ""))


class KnowledgeIndexer:
    """Keeps row embeddings and the vector index in sync with the database."""

    def __init__(self, embedding_service: EmbeddingService, vector_index: PineconeClient):
        self.embedding_service = embedding_service
        self.vector_index = vector_index

    async def index_document(self, doc: KnowledgeDocument) -> bool:
        """Embed a document and upsert it into the documents namespace."""
        embedding = await self.embedding_service.embed_text(f"{doc.title}\n\n{doc.content}")
        doc.embedding = embedding
        return await asyncio.to_thread(
            self.vector_index.upsert_single,
            doc.id,
            embedding,
            {"tenant_id": doc.tenant_id, "category": doc.category, "title": doc.title},
            PineconeClient.DOCUMENTS_NAMESPACE,
        )

    async def update_document_content(self, doc: KnowledgeDocument, content: str) -> bool:
        """Replace document content; the embedding is regenerated only if it changed."""
        if content == doc.content and doc.embedding:
            return True
        doc.content = content
        return await self.index_document(doc)

    async def index_inventory_item(self, item: InventoryItem) -> bool:
        embedding = await self.embedding_service.embed_text(inventory_embedding_text(item))
        item.embedding = embedding
        return await asyncio.to_thread(
            self.vector_index.upsert_single,
            item.id,
            embedding,
            {"sold": bool(item.sold), "marca": item.marca or "", "modelo": item.modelo or ""},
            PineconeClient.INVENTORY_NAMESPACE,
        )

    async def mark_sold(self, item: InventoryItem, sold: bool = True) -> bool:
        item.sold = sold
        return await asyncio.to_thread(
            self.vector_index.update_metadata,
            item.id,
            {"sold": sold},
            PineconeClient.INVENTORY_NAMESPACE,
        )
