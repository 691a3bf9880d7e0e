"""Collaborator boundaries: model assistance, embeddings, document indexes, knowledge graph."""

from ingestra.stack_clients.chat import ChatClient, ModelAssist
from ingestra.stack_clients.document_index import (
    Document,
    DocumentIndex,
    SqliteDocumentIndex,
    UploadResult,
)
from ingestra.stack_clients.embeddings import EmbeddingClient
from ingestra.stack_clients.knowledge_graph import GraphStats, KnowledgeGraph

__all__ = [
    "ChatClient",
    "ModelAssist",
    "Document",
    "DocumentIndex",
    "SqliteDocumentIndex",
    "UploadResult",
    "EmbeddingClient",
    "GraphStats",
    "KnowledgeGraph",
]
