"""
Abstract base class for model services.

A model service is one backend (a local Ollama server, the OpenAI API, ...)
that can list models, stream replies as typed deltas and embed text.
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from typing import Any

from tinychat.models.message import (
    Author,
    FilePart,
    Message,
    ModelArg,
    ModelConfig,
    ModelDescriptor,
    TextPart,
)
from tinychat.models.stream import Delta
from tinychat.utils.cancellation import CancellationToken


class ModelService(ABC):
    """
    Abstract base for model service providers.

    Responsibilities:
    - Model discovery and per-model arguments/features
    - Streamed generation (thought/text/file/abort deltas, then StreamEnd)
    - Batch text embeddings
    """

    name: str

    @abstractmethod
    async def get_models(self) -> list[ModelDescriptor]:
        """List the models this service offers."""
        pass

    @abstractmethod
    def get_args(self, model: str) -> list[ModelArg]:
        """List configurable arguments of a model, each with a default."""
        pass

    def get_features(self, model: str) -> list[str]:
        """
        Optional capabilities of a model.

        ``"schema"`` means the model accepts a JSON schema through
        ``config.args["schema"]`` and answers with matching JSON.
        """
        return []

    def prepare_config(self, config: ModelConfig) -> ModelConfig:
        """Fill every argument the config leaves unset with its default."""
        args = dict(config.args)
        for arg in self.get_args(config.model):
            args.setdefault(arg.name, arg.default)
        return config.model_copy(update={"args": args})

    @abstractmethod
    def generate(
        self,
        instructions: str,
        context: list[Message],
        config: ModelConfig,
        cancel: CancellationToken | None = None,
    ) -> AsyncIterator[Delta]:
        """
        Stream a reply.

        Args:
            instructions: System instructions
            context: Conversation so far, oldest first; the last message is the prompt
            config: Prepared model configuration
            cancel: Token checked between chunks

        Yields:
            ThoughtPart, TextPart, FilePart or AbortPart deltas, optionally
            followed by one StreamEnd carrying response metadata

        Raises:
            Exception: Provider-specific errors (the orchestrator rolls back)
        """
        pass

    @abstractmethod
    async def embed(self, texts: list[str], config: ModelConfig) -> list[list[float]]:
        """
        Embed texts.

        Returns:
            One vector per input text, in order

        Raises:
            EmbeddingError: If the provider call fails
        """
        pass

    async def close(self) -> None:
        """
        Close any open connections.
        Optional to override if the service needs cleanup.
        """
        pass


def to_chat_messages(instructions: str, context: list[Message]) -> list[dict[str, Any]]:
    """
    Flatten context into role/content dicts shared by chat-style SDKs.

    Text parts are joined; inline images (data URLs) are collected under
    ``images``. Everything else is dropped.
    """
    messages: list[dict[str, Any]] = []
    if instructions:
        messages.append({"role": "system", "content": instructions})

    for message in context:
        texts = []
        images = []
        for part in message.data:
            if isinstance(part, TextPart):
                texts.append(part.value)
            elif isinstance(part, FilePart) and part.url.startswith("data:image/"):
                images.append(part.url)

        entry: dict[str, Any] = {
            "role": "user" if message.author == Author.USER else "assistant",
            "content": "".join(texts),
        }
        if images:
            entry["images"] = images
        messages.append(entry)

    return messages
