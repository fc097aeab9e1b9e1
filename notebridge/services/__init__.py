"""Retrieval and chat services built on the gateway and the vector store."""
from notebridge.services.chat import ChatConfig, ChatService
from notebridge.services.rag import RetrievalConfig, RetrievalHit, RetrievalService

__all__ = [
    "ChatConfig",
    "ChatService",
    "RetrievalConfig",
    "RetrievalHit",
    "RetrievalService",
]
