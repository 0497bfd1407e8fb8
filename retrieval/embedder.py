"""
Embedding Service for the Carrera Cars lead bot.

Embeds inbound customer messages, knowledge documents and inventory
descriptions with AWS Bedrock Titan or OpenAI. All three share one vector
space, so the service refuses vectors whose size differs from the model's.
"""

import asyncio
import hashlib
import json
import logging
import unicodedata
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

import boto3
from openai import OpenAI

logger = logging.getLogger(__name__)


class EmbeddingError(Exception):
    """Embedding call failed or returned a vector of the wrong size."""


def normalize_text(text: str) -> str:
    """NFC with collapsed whitespace. Accents are kept."""
    return " ".join(unicodedata.normalize("NFC", text).split())


class EmbeddingCache:
    """LRU cache keyed by the SHA-1 of the case-folded normalized text."""

    def __init__(self, maxsize: int = 500):
        self.maxsize = maxsize
        self._entries: "OrderedDict[str, List[float]]" = OrderedDict()
        self.hits = 0
        self.misses = 0

    @staticmethod
    def key_for(text: str) -> str:
        return hashlib.sha1(normalize_text(text).casefold().encode("utf-8")).hexdigest()

    def get(self, text: str) -> Optional[List[float]]:
        key = self.key_for(text)
        vector = self._entries.get(key)
        if vector is None:
            self.misses += 1
            return None
        self._entries.move_to_end(key)
        self.hits += 1
        return vector

    def put(self, text: str, vector: List[float]) -> None:
        self._entries[self.key_for(text)] = vector
        self._entries.move_to_end(self.key_for(text))
        while len(self._entries) > self.maxsize:
            self._entries.popitem(last=False)

    def stats(self) -> Dict[str, int]:
        return {"size": len(self._entries), "hits": self.hits, "misses": self.misses}


class EmbeddingProvider(Enum):
    """Supported embedding providers."""
    BEDROCK_TITAN = "bedrock_titan"
    OPENAI = "openai"


# Character limits keep requests under each model's token window
MAX_INPUT_CHARS = {
    EmbeddingProvider.BEDROCK_TITAN: 25000,
    EmbeddingProvider.OPENAI: 30000,
}

KNOWN_DIMENSIONS = {
    "amazon.titan-embed-text-v2:0": 1024,
    "amazon.titan-embed-text-v1": 1536,
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
}


@dataclass
class EmbeddingConfig:
    """Configuration for embedding service."""
    provider: EmbeddingProvider = EmbeddingProvider.BEDROCK_TITAN
    model_id: str = "amazon.titan-embed-text-v2:0"
    dimension: int = 1024
    aws_region: str = "us-east-1"
    openai_api_key: Optional[str] = None


class EmbeddingService:
    """Text-to-vector gateway with an optional in-memory cache."""

    def __init__(self, config: Optional[EmbeddingConfig] = None, cache_size: int = 0):
        self.config = config or EmbeddingConfig()
        self._cache: Optional[EmbeddingCache] = EmbeddingCache(cache_size) if cache_size > 0 else None

        if self.config.provider == EmbeddingProvider.BEDROCK_TITAN:
            self._client = boto3.client("bedrock-runtime", region_name=self.config.aws_region)
            self._backend = self._embed_bedrock
        else:
            self._client = OpenAI(api_key=self.config.openai_api_key)
            self._backend = self._embed_openai
        logger.info(f"Embedding service using {self.config.provider.value} ({self.config.model_id})")

    def get_dimension(self) -> int:
        """Vector size of the configured model; the index is created with it."""
        return KNOWN_DIMENSIONS.get(self.config.model_id, self.config.dimension)

    async def embed_text(self, text: str) -> List[float]:
        """
        Embed one text.

        Raises:
            EmbeddingError: empty input, provider failure or dimension mismatch
        """
        text = normalize_text(text or "")
        if not text:
            raise EmbeddingError("Cannot embed empty text")

        if self._cache:
            cached = self._cache.get(text)
            if cached is not None:
                return cached

        limit = MAX_INPUT_CHARS[self.config.provider]
        try:
            vector = await asyncio.to_thread(self._backend, text[:limit])
        except Exception as e:
            logger.error(f"{self.config.provider.value} embedding failed: {e}")
            raise EmbeddingError(str(e)) from e

        expected = self.get_dimension()
        if len(vector) != expected:
            raise EmbeddingError(f"Expected {expected}-dim embedding, got {len(vector)}")

        if self._cache:
            self._cache.put(text, vector)
        return vector

    embed = embed_text

    def _embed_bedrock(self, text: str) -> List[float]:
        response = self._client.invoke_model(
            modelId=self.config.model_id,
            body=json.dumps({"inputText": text}),
            contentType="application/json",
            accept="application/json",
        )
        return json.loads(response["body"].read())["embedding"]

    def _embed_openai(self, text: str) -> List[float]:
        response = self._client.embeddings.create(model=self.config.model_id, input=text)
        return response.data[0].embedding

    async def health_check(self) -> bool:
        try:
            return bool(await self.embed_text("hola"))
        except EmbeddingError as e:
            logger.warning(f"Embedding health check failed: {e}")
            return False
