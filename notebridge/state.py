"""
Application state management.

Wires the shared transport, the provider registry, the model gateway, the
vector store and the services built on them into one container that the
FastAPI lifespan creates at startup and closes at shutdown.
"""
from __future__ import annotations

from dataclasses import dataclass

from notebridge.config import Settings, get_logger, get_settings
from notebridge.gateway import GatewayConfig, ModelGateway
from notebridge.indexer import DocumentIndexer, IndexingConfig
from notebridge.providers import ProviderRegistry, configure_registry
from notebridge.services import ChatConfig, ChatService, RetrievalConfig, RetrievalService
from notebridge.transport import Transport, create_transport
from notebridge.vector_store import VectorStore

logger = get_logger("state")


def gateway_config_from(settings: Settings) -> GatewayConfig:
    return GatewayConfig(
        chat_model=settings.CHAT_MODEL,
        embedding_model=settings.EMBEDDING_MODEL,
        temperature=settings.GENERATION_TEMPERATURE,
        enable_smart_memory=settings.ENABLE_SMART_MEMORY,
        auto_unload_on_switch=settings.AUTO_UNLOAD_ON_SWITCH,
    )


@dataclass
class AppState:
    """
    Central container for shared application resources.

    The gateway is the single owner of the active local model; the store
    and the indexer are shared by every request.
    """
    settings: Settings
    transport: Transport
    registry: ProviderRegistry
    gateway: ModelGateway
    store: VectorStore
    indexer: DocumentIndexer
    retrieval: RetrievalService
    chat: ChatService

    @classmethod
    async def create(
        cls,
        settings: Settings | None = None,
        transport: Transport | None = None,
    ) -> "AppState":
        """
        Create and initialize application state.

        Args:
            settings: Settings to use (default: cached settings)
            transport: Transport to share (default: built from settings)

        Returns:
            Initialized AppState instance
        """
        settings = settings or get_settings()
        transport = transport or create_transport(settings)

        registry = configure_registry(ProviderRegistry(), settings, transport)
        gateway = ModelGateway(registry, gateway_config_from(settings))

        store = VectorStore(settings.VECTOR_STORE_PATH)
        await store.load()

        indexer = DocumentIndexer(
            store,
            gateway,
            IndexingConfig(
                chunk_max_length=settings.CHUNK_MAX_LENGTH,
                chunk_delay_seconds=settings.INDEX_CHUNK_DELAY_SECONDS,
                enable_background_indexing=settings.ENABLE_BACKGROUND_INDEXING,
            ),
        )
        retrieval = RetrievalService(
            store,
            gateway,
            RetrievalConfig(top_k=settings.MAX_CONTEXT_CHUNKS, system_prompt=settings.SYSTEM_PROMPT),
        )
        chat = ChatService(
            gateway,
            retrieval,
            indexer,
            ChatConfig(system_prompt=settings.SYSTEM_PROMPT, stream_error_message=settings.STREAM_ERROR_MESSAGE),
        )

        logger.info(
            "Providers: %s | Chat model: %s | Index: %d chunks at %s",
            ", ".join(p.id for p in registry.all()) or "none",
            settings.CHAT_MODEL,
            len(store),
            store.path,
        )

        return cls(
            settings=settings,
            transport=transport,
            registry=registry,
            gateway=gateway,
            store=store,
            indexer=indexer,
            retrieval=retrieval,
            chat=chat,
        )

    def reconfigure(self, settings: Settings) -> None:
        """
        Apply new settings to the registry and the gateway.

        Requests already in flight keep the adapters they hold.
        """
        self.settings = settings
        configure_registry(self.registry, settings, self.transport)
        self.gateway.reconfigure(gateway_config_from(settings))
        logger.info("Reconfigured providers: %s", ", ".join(p.id for p in self.registry.all()) or "none")

    def is_ready(self) -> bool:
        """Check if the application can serve chat requests."""
        return len(self.registry) > 0

    async def aclose(self) -> None:
        """Finish pending memory writes and release network resources."""
        await self.chat.wait_background()
        await self.transport.aclose()
