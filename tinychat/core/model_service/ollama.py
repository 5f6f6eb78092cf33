"""
Ollama model service using native ollama-python SDK.
"""

from collections.abc import AsyncIterator

import ollama

from tinychat.core.model_service.base import ModelService, to_chat_messages
from tinychat.models.message import (
    ListArg,
    Message,
    ModelArg,
    ModelConfig,
    ModelDescriptor,
    OllamaMetadata,
    RangeArg,
    TextPart,
    ThoughtPart,
)
from tinychat.models.stream import Delta, StreamEnd
from tinychat.utils.cancellation import CancellationToken
from tinychat.utils.exceptions import EmbeddingError
from tinychat.utils.logger import get_logger

logger = get_logger(__name__)

_THINK = {"auto": None, "on": True, "off": False}


class OllamaModelService(ModelService):
    """
    Ollama model service.

    Streams chat completions (including thinking output) and embeds
    with the native SDK. Structured output goes through ``format``.
    """

    name = "ollama"

    def __init__(self, host: str = "http://localhost:11434", timeout: float = 120.0):
        """
        Initialize Ollama model service.

        Args:
            host: Ollama server URL
            timeout: Request timeout in seconds
        """
        self.host = host
        self.timeout = timeout

        # Create async client
        self.client = ollama.AsyncClient(host=host, timeout=timeout)

    async def get_models(self) -> list[ModelDescriptor]:
        response = await self.client.list()
        return [
            ModelDescriptor(name=model.model, features=["generate", "embed", "schema"])
            for model in response.models
            if model.model
        ]

    def get_args(self, model: str) -> list[ModelArg]:
        return [
            RangeArg(name="temperature", min=0, max=2, step=0.05, default=0.8),
            ListArg(name="thinking", values=list(_THINK), default="auto"),
        ]

    def get_features(self, model: str) -> list[str]:
        return ["schema"]

    async def generate(
        self,
        instructions: str,
        context: list[Message],
        config: ModelConfig,
        cancel: CancellationToken | None = None,
    ) -> AsyncIterator[Delta]:
        messages = to_chat_messages(instructions, context)
        for message in messages:
            if "images" in message:
                # ollama wants bare base64
                message["images"] = [url.split(",", 1)[-1] for url in message["images"]]

        options = {}
        if "temperature" in config.args:
            options["temperature"] = config.args["temperature"]

        stream = await self.client.chat(
            model=config.model,
            messages=messages,
            stream=True,
            format=config.args.get("schema"),
            options=options,
            think=_THINK.get(config.args.get("thinking", "auto")),
        )

        metadata = None
        async for chunk in stream:
            if cancel is not None and cancel.cancelled:
                break

            thinking = getattr(chunk.message, "thinking", None)
            if thinking:
                yield ThoughtPart(value=thinking)
            if chunk.message.content:
                yield TextPart(value=chunk.message.content)

            if chunk.done:
                metadata = OllamaMetadata(
                    done_reason=chunk.done_reason,
                    prompt_eval_count=chunk.prompt_eval_count,
                    eval_count=chunk.eval_count,
                    total_duration=chunk.total_duration,
                )

        yield StreamEnd(metadata=metadata)

    async def embed(self, texts: list[str], config: ModelConfig) -> list[list[float]]:
        if not texts:
            return []

        try:
            response = await self.client.embed(model=config.model, input=texts)
            return [list(vector) for vector in response.embeddings]
        except Exception as e:
            logger.error(
                "Ollama embedding error: {}",
                e,
                extra={"model": config.model, "host": self.host},
            )
            raise EmbeddingError(f"Ollama embedding error: {e}") from e

    async def close(self):
        """Close client (Ollama SDK handles cleanup internally)."""
        pass
