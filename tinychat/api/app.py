"""
TinyChat FastAPI Application

A REST API server for the TinyChat core.
Provides endpoints for chats, message chains, long-term memories, embeddings,
models, streamed replies and device pairing. The caller's identity comes from
the ``X-User-Id`` header.
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from tinychat.api.container import Container
from tinychat.api.schemas import (
    CloneChatRequest,
    CreateMemoriesRequest,
    CreateMessageRequest,
    CreateSummaryRequest,
    EditMessageRequest,
    FinalizePairingResponse,
    HealthResponse,
    MetadataRequest,
    PairingResponse,
    RelevantMemoriesRequest,
    RenameChatRequest,
    SaveEmbeddingsRequest,
    SendMessageRequest,
    StreamEvent,
)
from tinychat.config import Config
from tinychat.core.storage.base import EmbeddingKind
from tinychat.models.chat import Chat, Folder
from tinychat.models.memory import Memory, PendingChat, PendingEmbeddings, Summary
from tinychat.models.message import Message, ModelArg, ModelDescriptor
from tinychat.models.stream import ReplySnapshot
from tinychat.utils.exceptions import (
    InvalidStateError,
    NotFoundError,
    TinyChatError,
    UpstreamServiceError,
    ValidationError,
)
from tinychat.utils.logger import get_logger, setup_logging

logger = get_logger(__name__)

_STATUS_CODES: list[tuple[type[TinyChatError], int]] = [
    (NotFoundError, 404),
    (InvalidStateError, 409),
    (ValidationError, 422),
    (UpstreamServiceError, 502),
]


def status_for(error: TinyChatError) -> int:
    for error_type, status in _STATUS_CODES:
        if isinstance(error, error_type):
            return status
    return 500


# ═══════════════════════════════════════════════════════════
# DEPENDENCIES
# ═══════════════════════════════════════════════════════════


def get_container(request: Request) -> Container:
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise HTTPException(status_code=503, detail="Server not initialized")
    return container


def get_user_id(
    container: Container = Depends(get_container),
    x_user_id: str | None = Header(default=None),
) -> str:
    return x_user_id or container.config.default_user_id


def create_app(config: Config | None = None, container: Container | None = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        config: Configuration (default: environment and config.yaml)
        container: Pre-built container; its lifecycle is still managed by the app

    Returns:
        FastAPI app
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifespan context manager for startup/shutdown."""
        nonlocal config, container

        if container is None:
            config = config or Config.from_env_or_yaml("config.yaml")
            setup_logging(**config.logging.model_dump())
            container = Container(config)

        logger.info("Starting TinyChat server")
        await container.start()
        app.state.container = container

        yield

        logger.info("Shutting down TinyChat server")
        app.state.container = None
        await container.close()
        logger.info("Cleanup complete")

    app = FastAPI(
        title="TinyChat API",
        description="Branching conversations with long-term memory",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(TinyChatError)
    async def handle_tinychat_error(request: Request, error: TinyChatError):
        status = status_for(error)
        if status >= 500:
            logger.error(
                "Error handling {}: {}", request.url.path, error, extra=error.context
            )
        content: dict[str, Any] = {"detail": error.message, "context": error.context}
        if isinstance(error, UpstreamServiceError):
            content["original_data"] = error.original_data
        return JSONResponse(status_code=status, content=content)

    _register_routes(app)
    return app


def _register_routes(app: FastAPI) -> None:
    # Health check endpoint
    @app.get("/health", response_model=HealthResponse)
    async def health_check(container: Container = Depends(get_container)):
        return HealthResponse(
            status="healthy",
            services=container.registry.names(),
            embeddings=container.config.embeddings.service,
            memory_enabled=container.config.memory.enabled,
        )

    # ═══════════════════════════════════════════════════════════
    # MODELS
    # ═══════════════════════════════════════════════════════════

    @app.get("/models", response_model=dict[str, list[ModelDescriptor]])
    async def list_models(container: Container = Depends(get_container)):
        """Models of every configured service; unreachable services list none."""
        return await container.registry.list_models()

    @app.get("/models/{service}/{model}/args", response_model=list[ModelArg])
    async def get_model_args(service: str, model: str, container: Container = Depends(get_container)):
        return container.registry.get(service).get_args(model)

    # ═══════════════════════════════════════════════════════════
    # FOLDERS & CHATS
    # ═══════════════════════════════════════════════════════════

    @app.get("/folders", response_model=list[Folder])
    async def list_folders(
        container: Container = Depends(get_container), user_id: str = Depends(get_user_id)
    ):
        """Folders with their chats, most recent activity first."""
        return await container.editor.list_folders(user_id)

    @app.get("/chats/{chat_id}", response_model=Chat)
    async def get_chat(
        chat_id: str,
        container: Container = Depends(get_container),
        user_id: str = Depends(get_user_id),
    ):
        return await container.editor.get_chat(chat_id, user_id)

    @app.patch("/chats/{chat_id}", response_model=Chat)
    async def rename_chat(
        chat_id: str,
        request: RenameChatRequest,
        container: Container = Depends(get_container),
        user_id: str = Depends(get_user_id),
    ):
        return await container.editor.rename_chat(chat_id, request.title, user_id)

    @app.delete("/chats/{chat_id}")
    async def delete_chat(
        chat_id: str,
        container: Container = Depends(get_container),
        user_id: str = Depends(get_user_id),
    ):
        """Delete a chat; its folder goes too when it held nothing else."""
        container.conversation.cancel(chat_id, "chat deleted")
        await container.editor.delete_chat(chat_id, user_id)
        return {"id": chat_id, "deleted": True}

    @app.post("/chats/{chat_id}/clone", response_model=Chat)
    async def clone_chat(
        chat_id: str,
        request: CloneChatRequest,
        container: Container = Depends(get_container),
        user_id: str = Depends(get_user_id),
    ):
        """Fork a chat up to and including a message."""
        return await container.editor.clone_until(
            chat_id,
            request.until_message_id,
            title=request.title,
            new_folder=request.new_folder,
            user_id=user_id,
        )

    @app.post("/chats/{chat_id}/cancel")
    async def cancel_reply(
        chat_id: str,
        container: Container = Depends(get_container),
        user_id: str = Depends(get_user_id),
    ):
        await container.editor.get_chat(chat_id, user_id)
        return {"chat_id": chat_id, "cancelled": container.conversation.cancel(chat_id)}

    # ═══════════════════════════════════════════════════════════
    # MESSAGES
    # ═══════════════════════════════════════════════════════════

    @app.get("/chats/{chat_id}/messages", response_model=list[Message])
    async def list_messages(
        chat_id: str,
        include_metadata: bool = False,
        container: Container = Depends(get_container),
        user_id: str = Depends(get_user_id),
    ):
        """A chat's messages in chain order."""
        await container.editor.get_chat(chat_id, user_id)
        return await container.editor.list_messages(
            chat_id, user_id, include_metadata=include_metadata
        )

    @app.post("/messages/metadata")
    async def list_metadata(
        request: MetadataRequest,
        container: Container = Depends(get_container),
        user_id: str = Depends(get_user_id),
    ):
        metadata = await container.editor.list_metadata(request.ids, user_id)
        return {
            message_id: value.model_dump(mode="json") if value is not None else None
            for message_id, value in metadata.items()
        }

    @app.post("/messages", response_model=Message)
    async def create_message(
        request: CreateMessageRequest,
        container: Container = Depends(get_container),
        user_id: str = Depends(get_user_id),
    ):
        """Store a message without generating a reply."""
        return await container.editor.create_message(
            user_id,
            request.author,
            request.config,
            request.data,
            metadata=request.metadata,
            chat_id=request.chat_id,
            previous_id=request.previous_id,
            temporary=request.temporary,
            incognito=request.incognito,
        )

    @app.put("/messages/{message_id}", response_model=Message)
    async def edit_message(
        message_id: str,
        request: EditMessageRequest,
        container: Container = Depends(get_container),
        user_id: str = Depends(get_user_id),
    ):
        return await container.editor.edit_message(
            message_id,
            request.author,
            request.config,
            request.data,
            request.metadata,
            truncate=request.truncate,
            user_id=user_id,
        )

    @app.delete("/messages/{message_id}")
    async def delete_message(
        message_id: str,
        container: Container = Depends(get_container),
        user_id: str = Depends(get_user_id),
    ):
        """Delete a message with its partner turn."""
        await container.editor.delete_pair(message_id, user_id)
        return {"id": message_id, "deleted": True}

    # ═══════════════════════════════════════════════════════════
    # STREAMED REPLIES
    # ═══════════════════════════════════════════════════════════

    @app.post("/conversation/send")
    async def send_message(
        request: SendMessageRequest,
        container: Container = Depends(get_container),
        user_id: str = Depends(get_user_id),
    ):
        """
        Store a user message and stream the replies as NDJSON.

        The first line carries the stored message, then reply snapshots
        follow, and a final ``done`` or ``error`` line closes the stream.
        """
        message = await container.conversation.submit(
            user_id,
            request.config,
            request.data,
            chat_id=request.chat_id,
            previous_id=request.previous_id,
            edit_id=request.edit_id,
            truncate=request.truncate,
            temporary=request.temporary,
            incognito=request.incognito,
        )
        return _stream_reply(container, message, user_id)

    @app.post("/messages/{message_id}/reply")
    async def regenerate_reply(
        message_id: str,
        container: Container = Depends(get_container),
        user_id: str = Depends(get_user_id),
    ):
        """Regenerate the replies from an existing user message onward."""
        message = await container.editor.get_message(message_id, user_id)
        return _stream_reply(container, message, user_id)

    # ═══════════════════════════════════════════════════════════
    # MEMORIES & SUMMARIES
    # ═══════════════════════════════════════════════════════════

    @app.get("/memories", response_model=list[Memory])
    async def list_memories(
        latest_only: bool = True,
        container: Container = Depends(get_container),
        user_id: str = Depends(get_user_id),
    ):
        return await container.memory_store.list_memories(user_id, latest_only=latest_only)

    @app.get("/memories/pending", response_model=list[PendingChat])
    async def list_pending_chats(
        container: Container = Depends(get_container), user_id: str = Depends(get_user_id)
    ):
        """Chats with messages newer than their latest memories."""
        return await container.memory_store.list_pending_chats(user_id)

    @app.post("/memories/relevant", response_model=list[Memory])
    async def list_relevant_memories(
        request: RelevantMemoriesRequest,
        container: Container = Depends(get_container),
        user_id: str = Depends(get_user_id),
    ):
        overrides = request.model_dump(exclude={"embedding"}, exclude_none=True)
        options = container.memory_store.ranker.options.model_copy(update=overrides)
        return await container.memory_store.list_relevant(user_id, request.embedding, options)

    @app.post("/memories/extract")
    async def extract_memories(
        container: Container = Depends(get_container), user_id: str = Depends(get_user_id)
    ):
        """Memorize every stale chat now."""
        memorized = await container.extractor.run(user_id)
        return {"memorized": memorized}

    @app.post("/chats/{chat_id}/memories", response_model=list[Memory])
    async def create_memories(
        chat_id: str,
        request: CreateMemoriesRequest,
        container: Container = Depends(get_container),
        user_id: str = Depends(get_user_id),
    ):
        """Store a memory batch; the chat's previous memories stop being latest."""
        return await container.memory_store.create_memories(
            chat_id, request.config, request.memories, user_id
        )

    @app.post("/chats/{chat_id}/summaries", response_model=Summary)
    async def create_summary(
        chat_id: str,
        request: CreateSummaryRequest,
        container: Container = Depends(get_container),
        user_id: str = Depends(get_user_id),
    ):
        return await container.memory_store.create_summary(
            chat_id, request.config, request.content, user_id
        )

    @app.get("/chats/{chat_id}/summaries", response_model=list[Summary])
    async def list_summaries(
        chat_id: str,
        container: Container = Depends(get_container),
        user_id: str = Depends(get_user_id),
    ):
        await container.editor.get_chat(chat_id, user_id)
        return await container.memory_store.list_summaries(chat_id)

    # ═══════════════════════════════════════════════════════════
    # EMBEDDINGS
    # ═══════════════════════════════════════════════════════════

    @app.get("/embeddings/missing", response_model=PendingEmbeddings)
    async def list_missing_embeddings(
        container: Container = Depends(get_container), user_id: str = Depends(get_user_id)
    ):
        return await container.memory_store.list_missing_embeddings(user_id)

    @app.put("/embeddings/{kind}")
    async def save_embeddings(
        kind: EmbeddingKind,
        request: SaveEmbeddingsRequest,
        container: Container = Depends(get_container),
        user_id: str = Depends(get_user_id),
    ):
        updated = await container.memory_store.save_embeddings(kind, request.embeddings, user_id)
        return {"kind": kind, "updated": updated}

    @app.delete("/embeddings")
    async def reset_embeddings(
        container: Container = Depends(get_container), user_id: str = Depends(get_user_id)
    ):
        await container.embedding_job.reset(user_id)
        return {"reset": True}

    @app.post("/embeddings/sync")
    async def sync_embeddings(
        container: Container = Depends(get_container), user_id: str = Depends(get_user_id)
    ):
        """Embed everything that still lacks an embedding."""
        return await container.embedding_job.run(user_id)

    # ═══════════════════════════════════════════════════════════
    # PAIRING
    # ═══════════════════════════════════════════════════════════

    @app.post("/pairings", response_model=PairingResponse)
    async def start_pairing(container: Container = Depends(get_container)):
        return PairingResponse(id=await container.pairing.start())

    @app.post("/pairings/{pairing_id}/accept")
    async def accept_pairing(
        pairing_id: str,
        container: Container = Depends(get_container),
        user_id: str = Depends(get_user_id),
    ):
        await container.pairing.accept(pairing_id, user_id)
        return {"id": pairing_id, "accepted": True}

    @app.post("/pairings/{pairing_id}/finalize", response_model=FinalizePairingResponse)
    async def finalize_pairing(pairing_id: str, container: Container = Depends(get_container)):
        user_id = await container.pairing.finalize(pairing_id)
        return FinalizePairingResponse(accepted=user_id is not None, user_id=user_id)


def _stream_reply(container: Container, message: Message, user_id: str) -> StreamingResponse:
    """
    Run the reply in a task and forward its snapshots as NDJSON lines.

    A client that disconnects cancels the reply; what was generated is kept.
    """
    queue: asyncio.Queue[ReplySnapshot | None] = asyncio.Queue()

    async def run() -> list[Message]:
        try:
            return await container.conversation.reply(message.id, user_id, queue.put_nowait)
        finally:
            queue.put_nowait(None)

    async def lines() -> AsyncIterator[str]:
        task = asyncio.create_task(run())
        finished = False
        try:
            yield _line(StreamEvent(event="message", message=message))
            while (snapshot := await queue.get()) is not None:
                yield _line(StreamEvent(event="snapshot", snapshot=snapshot))

            try:
                replies = await task
            except TinyChatError as e:
                event = StreamEvent(event="error", status=status_for(e), detail=e.message)
                if isinstance(e, UpstreamServiceError):
                    event.original_data = [
                        part.model_dump(mode="json") if hasattr(part, "model_dump") else part
                        for part in e.original_data
                    ]
                finished = True
                yield _line(event)
                return

            finished = True
            yield _line(StreamEvent(event="done", replies=replies))
        finally:
            if not finished and not task.done():
                container.conversation.cancel(message.chat_id, "client disconnected")

    return StreamingResponse(lines(), media_type="application/x-ndjson")


def _line(event: StreamEvent) -> str:
    return event.model_dump_json(exclude_none=True) + "\n"
