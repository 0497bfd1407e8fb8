"""
Retrieval Module for the Carrera Cars lead bot.

This module provides grounding for generation:
- Embedding generation (Bedrock/OpenAI)
- Pinecone vector operations
- Two-corpus retrieval (knowledge documents, unsold inventory)
- Context building
"""

from .embedder import EmbeddingService, EmbeddingProvider, EmbeddingError
from .pinecone_client import PineconeClient, SearchResult
from .knowledge_retriever import KnowledgeRetriever, KnowledgeIndexer, RetrievalResult
from .context_builder import ContextBuilder, Context

__all__ = [
    "EmbeddingService",
    "EmbeddingProvider",
    "EmbeddingError",
    "PineconeClient",
    "SearchResult",
    "KnowledgeRetriever",
    "KnowledgeIndexer",
    "RetrievalResult",
    "ContextBuilder",
    "Context",
]
