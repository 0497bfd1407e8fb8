"""
Pinecone Client for the Carrera Cars lead bot.

Handles all vector database operations. Similarity is cosine and is
computed by Pinecone; callers only pass the query vector and a metadata
filter.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pinecone import Pinecone, ServerlessSpec

logger = logging.getLogger(__name__)


@dataclass
class SearchResult:
    """Result from a vector search."""
    id: str
    score: float
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class PineconeConfig:
    """Configuration for Pinecone client."""
    api_key: str
    index_name: str = "carrera-leadbot"
    dimension: int = 1024
    metric: str = "cosine"
    cloud: str = "aws"
    region: str = "us-east-1"


class PineconeClient:
    """
    Client for Pinecone vector database operations.

    Knowledge documents and inventory live in separate namespaces of one
    index so each corpus is ranked independently.
    """

    DOCUMENTS_NAMESPACE = "documents"
    INVENTORY_NAMESPACE = "inventory"

    def __init__(self, config: PineconeConfig):
        self.config = config
        self._client = None
        self._index = None

        self._initialize()

    def _initialize(self):
        """Initialize Pinecone client and index."""
        try:
            self._client = Pinecone(api_key=self.config.api_key)

            existing_indexes = [idx.name for idx in self._client.list_indexes()]
            if self.config.index_name not in existing_indexes:
                logger.info(f"Creating new Pinecone index: {self.config.index_name}")
                self._client.create_index(
                    name=self.config.index_name,
                    dimension=self.config.dimension,
                    metric=self.config.metric,
                    spec=ServerlessSpec(cloud=self.config.cloud, region=self.config.region),
                )
            else:
                logger.info(f"Using existing Pinecone index: {self.config.index_name}")

            self._index = self._client.Index(self.config.index_name)

        except Exception as e:
            logger.error(f"Failed to initialize Pinecone: {e}")
            raise

    def upsert_single(
        self,
        id: str,
        embedding: List[float],
        metadata: Dict[str, Any],
        namespace: str = "",
    ) -> bool:
        """Upsert a single vector. Returns False on failure."""
        try:
            self._index.upsert(vectors=[(id, embedding, metadata)], namespace=namespace)
            return True
        except Exception as e:
            logger.error(f"Single upsert failed: {e}")
            return False

    def update_metadata(self, id: str, metadata: Dict[str, Any], namespace: str = "") -> bool:
        """Patch metadata of an existing vector without re-embedding."""
        try:
            self._index.update(id=id, set_metadata=metadata, namespace=namespace)
            return True
        except Exception as e:
            logger.error(f"Metadata update failed for {id}: {e}")
            return False

    def query(
        self,
        embedding: List[float],
        top_k: int = 3,
        namespace: str = "",
        filter: Optional[Dict[str, Any]] = None,
    ) -> List[SearchResult]:
        """
        Query for similar vectors, highest similarity first.

        Args:
            embedding: Query embedding
            top_k: Number of results to return
            namespace: Namespace to search
            filter: Metadata filter applied before ranking

        Returns:
            List of SearchResult objects
        """
        try:
            response = self._index.query(
                vector=embedding,
                top_k=top_k,
                namespace=namespace,
                filter=filter,
                include_metadata=True,
            )
        except Exception as e:
            logger.error(f"Query failed: {e}")
            raise

        results = [
            SearchResult(id=match.id, score=match.score, metadata=match.metadata or {})
            for match in response.matches
        ]
        results.sort(key=lambda r: r.score, reverse=True)
        logger.debug(f"Query on '{namespace}' returned {len(results)} results")
        return results
