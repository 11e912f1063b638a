"""ChromaDB vector index implementation."""

import asyncio
import gc
import logging
from pathlib import Path
from typing import Any

import chromadb
from chromadb.config import Settings

from kura.search.errors import VectorIndexUnavailable
from kura.search.schemas import VectorMatch

logger = logging.getLogger(__name__)


class ChromaVectorIndex:
    """Vector index over a persistent ChromaDB collection.

    Each item is stored under its content id with an owner_id metadata field.
    Queries always filter on owner_id, so one owner never sees another
    owner's vectors. The collection uses cosine space, so distances are
    1 - cosine similarity.
    """

    COLLECTION_NAME = "kura_content"

    def __init__(self, persist_path: Path) -> None:
        """Initialize the vector index with persistent storage.

        Args:
            persist_path: Directory path for ChromaDB persistence.
        """
        self._client = chromadb.PersistentClient(
            path=str(persist_path),
            settings=Settings(anonymized_telemetry=False),
        )
        self._collection = self._client.get_or_create_collection(
            name=self.COLLECTION_NAME,
            metadata={"hnsw:space": "cosine"},
        )

    @property
    def collection(self) -> chromadb.Collection:
        """Get the underlying ChromaDB collection."""
        return self._collection

    async def query(self, vector: list[float], k: int, owner_id: str) -> list[VectorMatch]:
        """Return up to k nearest items owned by owner_id, nearest first.

        Raises:
            VectorIndexUnavailable: If ChromaDB fails.
        """
        try:
            result = await asyncio.to_thread(
                self._collection.query,
                query_embeddings=[vector],
                n_results=k,
                where={"owner_id": owner_id},
                include=["distances"],
            )
        except Exception as e:
            raise VectorIndexUnavailable(f"Vector query failed: {e}") from e

        ids = (result.get("ids") or [[]])[0]
        distances = (result.get("distances") or [[]])[0]
        return [VectorMatch(id=doc_id, distance=float(d)) for doc_id, d in zip(ids, distances)]

    def upsert(
        self,
        ids: list[str],
        embeddings: list[list[float]],
        owner_ids: list[str],
        metadatas: list[dict[str, Any]] | None = None,
    ) -> None:
        """Add or replace item vectors.

        Args:
            ids: Content ids.
            embeddings: One vector per id.
            owner_ids: Owner of each item.
            metadatas: Optional extra metadata per item.
        """
        merged = [
            {**(metadatas[i] if metadatas else {}), "owner_id": owner_ids[i]}
            for i in range(len(ids))
        ]
        self._collection.upsert(
            ids=ids,
            embeddings=embeddings,  # type: ignore[arg-type]
            metadatas=merged,  # type: ignore[arg-type]
        )

    def delete(self, ids: list[str]) -> None:
        """Delete item vectors by id."""
        self._collection.delete(ids=ids)

    def count(self) -> int:
        """Number of vectors in the collection."""
        return self._collection.count()

    def close(self) -> None:
        """Close the vector index and release resources."""
        # PersistentClient has no close(); stop its internal systems instead
        if self._client is not None and hasattr(self._client, "_identifier_to_system"):
            for system in list(self._client._identifier_to_system.values()):
                if hasattr(system, "stop"):
                    try:
                        system.stop()
                    except Exception as e:
                        logger.debug(f"Ignoring ChromaDB shutdown error: {e}")

        self._collection = None  # type: ignore[assignment]
        self._client = None  # type: ignore[assignment]

        # Release file handles held by the client
        gc.collect()
