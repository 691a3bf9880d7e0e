"""Embedding generation boundary."""

from typing import Protocol, runtime_checkable


@runtime_checkable
class EmbeddingClient(Protocol):
    """Batch text -> vector capability.

    Implementations return one vector per input text, in input order, and
    raise on failure. The loader treats a raise as a failure of the whole
    batch.
    """

    def embed(self, texts: list[str]) -> list[list[float]]:
        ...
