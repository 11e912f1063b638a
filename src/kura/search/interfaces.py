"""Collaborator capabilities consumed by the search core."""

from typing import Protocol, Sequence, runtime_checkable

from kura.search.schemas import ContentRecord, DocumentAttributes, LexicalMatch, VectorMatch


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Turns text into a fixed-dimension vector."""

    async def embed(self, text: str) -> list[float]: ...


@runtime_checkable
class VectorIndex(Protocol):
    """Owner-scoped nearest-neighbour search over stored vectors."""

    async def query(self, vector: Sequence[float], k: int, owner_id: str) -> list[VectorMatch]: ...


@runtime_checkable
class LexicalIndex(Protocol):
    """Owner-scoped keyword search."""

    async def query(self, text: str, k: int, owner_id: str) -> list[LexicalMatch]: ...


@runtime_checkable
class MetadataStore(Protocol):
    """Looks up stored items by id."""

    async def get_attributes(self, ids: Sequence[str]) -> list[DocumentAttributes]: ...

    async def get_by_ids(self, ids: Sequence[str]) -> list[ContentRecord]: ...


@runtime_checkable
class QueryLog(Protocol):
    """Fire-and-forget record of served queries."""

    def record(
        self,
        query: str,
        result_count: int,
        method: str,
        elapsed_ms: int,
        owner_id: str,
    ) -> None: ...
