"""
Carrera Cars data ingestion CLI.

Usage:
    python -m ingest.main --source documents --dir data/documents
    python -m ingest.main --source inventory --file data/inventory.csv
    python -m ingest.main --source all --dir data/
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config.settings import get_settings
from database.repositories import DocumentRepository, InventoryRepository
from database.session import init_db, close_db, session_scope
from retrieval.embedder import EmbeddingService, EmbeddingConfig, EmbeddingProvider, EmbeddingError
from retrieval.knowledge_retriever import KnowledgeIndexer
from retrieval.pinecone_client import PineconeClient, PineconeConfig

from .document_loader import DocumentLoader, DocumentRecord
from .inventory_loader import InventoryLoader, VehicleRecord

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./leadbot.db"


class IngestionPipeline:
    """Persists loaded documents and vehicles and indexes their embeddings."""

    def __init__(
        self,
        indexer: KnowledgeIndexer,
        tenant_id: str,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    ):
        self.indexer = indexer
        self.tenant_id = tenant_id
        self.session_factory = session_factory

    @classmethod
    def from_settings(cls) -> "IngestionPipeline":
        s = get_settings()
        if not s.pinecone_api_key:
            logger.error("PINECONE_API_KEY not set")
            sys.exit(1)

        if s.is_openai:
            config = EmbeddingConfig(
                provider=EmbeddingProvider.OPENAI,
                model_id=s.openai_embed_model,
                openai_api_key=s.openai_api_key,
            )
        else:
            config = EmbeddingConfig(
                provider=EmbeddingProvider.BEDROCK_TITAN,
                model_id=s.bedrock_embed_model_id,
                aws_region=s.aws_region,
            )
        embedding_service = EmbeddingService(config)

        pinecone_client = PineconeClient(PineconeConfig(
            api_key=s.pinecone_api_key,
            index_name=s.pinecone_index_name,
            cloud=s.pinecone_cloud,
            region=s.pinecone_region,
            dimension=embedding_service.get_dimension(),
        ))
        return cls(KnowledgeIndexer(embedding_service, pinecone_client), s.default_tenant_id)

    async def ingest_documents(self, records: List[DocumentRecord]) -> Dict[str, int]:
        """
        Store new documents and refresh changed ones.

        A document is matched on (tenant, file name, title). Its embedding is
        regenerated only when the content differs from the stored copy.
        """
        stats = {"stored": 0, "updated": 0, "unchanged": 0, "indexed": 0, "failed": 0}
        for record in records:
            async with session_scope(self.session_factory) as session:
                docs = DocumentRepository(session)
                doc = await docs.get_by_source(self.tenant_id, record.title, record.file_name)
                if doc is None:
                    doc = await docs.create(
                        tenant_id=self.tenant_id,
                        title=record.title,
                        category=record.category,
                        content=record.content,
                        file_name=record.file_name,
                    )
                    stats["stored"] += 1
                    index = self.indexer.index_document(doc)
                else:
                    doc.category = record.category
                    if doc.content == record.content and doc.embedding:
                        stats["unchanged"] += 1
                        continue
                    stats["updated"] += 1
                    index = self.indexer.update_document_content(doc, record.content)

                try:
                    if await index:
                        stats["indexed"] += 1
                    else:
                        stats["failed"] += 1
                except EmbeddingError as e:
                    logger.error(f"Failed to index document '{record.title}': {e}")
                    stats["failed"] += 1
        logger.info(f"Documents: {stats}")
        return stats

    async def ingest_inventory(self, vehicles: List[VehicleRecord]) -> Dict[str, int]:
        """Store vehicles; rows with a known matrícula are updated in place."""
        stats = {"stored": 0, "updated": 0, "unchanged": 0, "indexed": 0, "failed": 0}
        for vehicle in vehicles:
            columns = vehicle.to_columns()
            async with session_scope(self.session_factory) as session:
                inventory = InventoryRepository(session)
                item = await inventory.get_by_matricula(vehicle.matricula) if vehicle.matricula else None
                if item is None:
                    item = await inventory.create(**columns)
                    stats["stored"] += 1
                    index = self.indexer.index_inventory_item(item)
                else:
                    changed = {k: v for k, v in columns.items() if k != "sold" and getattr(item, k) != v}
                    sold_changed = bool(item.sold) != vehicle.sold
                    if not changed and not sold_changed and item.embedding:
                        stats["unchanged"] += 1
                        continue
                    stats["updated"] += 1
                    for k, v in changed.items():
                        setattr(item, k, v)
                    if changed or not item.embedding:
                        item.sold = vehicle.sold
                        index = self.indexer.index_inventory_item(item)
                    else:
                        index = self.indexer.mark_sold(item, vehicle.sold)

                try:
                    if await index:
                        stats["indexed"] += 1
                    else:
                        stats["failed"] += 1
                except EmbeddingError as e:
                    logger.error(f"Failed to index vehicle {item.display_name}: {e}")
                    stats["failed"] += 1
        logger.info(f"Inventory: {stats}")
        return stats



async def run(args: argparse.Namespace) -> None:
    settings = get_settings()
    await init_db(settings.database_url or DEFAULT_DATABASE_URL)
    pipeline = IngestionPipeline.from_settings()

    try:
        if args.source in ("documents", "all"):
            doc_dir = Path(args.dir) / "documents" if args.source == "all" else Path(args.dir)
            if args.file and args.source == "documents":
                records = DocumentLoader().load_file(args.file)
            else:
                records = DocumentLoader().load_directory(doc_dir)
            await pipeline.ingest_documents(records)

        if args.source in ("inventory", "all"):
            inventory_file = args.file if args.source == "inventory" else None
            if inventory_file is None:
                candidates = [Path(args.dir) / name for name in ("inventory.csv", "inventory.json")]
                inventory_file = next((p for p in candidates if p.exists()), None)
            if inventory_file is None:
                logger.error("--file required for inventory ingestion")
                sys.exit(1)
            await pipeline.ingest_inventory(InventoryLoader().load(inventory_file))
    finally:
        await close_db()


def main():
    parser = argparse.ArgumentParser(description="Carrera Cars knowledge and inventory ingestion")
    parser.add_argument(
        "--source",
        choices=["documents", "inventory", "all"],
        required=True,
        help="Data source type to ingest",
    )
    parser.add_argument("--file", help="Path to a single data file")
    parser.add_argument("--dir", default="./data", help="Data directory")
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])

    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    asyncio.run(run(args))
    logger.info("Ingestion complete")


if __name__ == "__main__":
    main()
