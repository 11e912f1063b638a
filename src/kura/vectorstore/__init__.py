"""Vector index module for semantic search."""

from kura.vectorstore.store import ChromaVectorIndex

__all__ = ["ChromaVectorIndex"]
