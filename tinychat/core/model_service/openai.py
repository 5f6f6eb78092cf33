"""
OpenAI model service using official SDK.
"""

from collections.abc import AsyncIterator
from typing import Any

from openai import AsyncOpenAI

from tinychat.core.model_service.base import ModelService, to_chat_messages
from tinychat.models.message import (
    ListArg,
    Message,
    ModelArg,
    ModelConfig,
    ModelDescriptor,
    OpenAIMetadata,
    RangeArg,
    TextPart,
)
from tinychat.models.stream import Delta, StreamEnd
from tinychat.utils.cancellation import CancellationToken
from tinychat.utils.exceptions import EmbeddingError
from tinychat.utils.logger import get_logger

logger = get_logger(__name__)

_REASONING_PREFIXES = ("o1", "o3", "o4", "gpt-5")


def _openai_messages(instructions: str, context: list[Message]) -> list[dict[str, Any]]:
    messages = []
    for entry in to_chat_messages(instructions, context):
        images = entry.pop("images", None)
        if images:
            entry["content"] = [
                {"type": "text", "text": entry["content"]},
                *({"type": "image_url", "image_url": {"url": url}} for url in images),
            ]
        messages.append(entry)
    return messages


class OpenAIModelService(ModelService):
    """
    OpenAI model service.

    Uses official OpenAI SDK streaming chat completions; works with any
    OpenAI-compatible endpoint through ``base_url``.
    """

    name = "openai"

    def __init__(
        self,
        api_key: str,
        organization: str | None = None,
        base_url: str | None = None,
        timeout: float = 120.0,
    ):
        """
        Initialize OpenAI model service.

        Args:
            api_key: OpenAI API key
            organization: Optional organization ID
            base_url: Optional custom base URL
            timeout: Request timeout in seconds
        """
        self.client = AsyncOpenAI(
            api_key=api_key, organization=organization, base_url=base_url, timeout=timeout
        )

    async def get_models(self) -> list[ModelDescriptor]:
        models = []
        async for model in self.client.models.list():
            features = ["embed"] if "embedding" in model.id else ["generate", "schema"]
            models.append(ModelDescriptor(name=model.id, features=features))
        return models

    def get_args(self, model: str) -> list[ModelArg]:
        if model.startswith(_REASONING_PREFIXES):
            return [
                ListArg(
                    name="reasoning_effort",
                    values=["minimal", "low", "medium", "high"],
                    default="medium",
                )
            ]
        return [RangeArg(name="temperature", min=0, max=2, step=0.05, default=1)]

    def get_features(self, model: str) -> list[str]:
        return [] if "embedding" in model else ["schema"]

    async def generate(
        self,
        instructions: str,
        context: list[Message],
        config: ModelConfig,
        cancel: CancellationToken | None = None,
    ) -> AsyncIterator[Delta]:
        params: dict[str, Any] = {
            "model": config.model,
            "messages": _openai_messages(instructions, context),
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        if "temperature" in config.args:
            params["temperature"] = config.args["temperature"]
        if "reasoning_effort" in config.args:
            params["reasoning_effort"] = config.args["reasoning_effort"]
        if config.args.get("schema"):
            params["response_format"] = {
                "type": "json_schema",
                "json_schema": {"name": "response", "schema": config.args["schema"]},
            }

        stream = await self.client.chat.completions.create(**params)

        metadata = OpenAIMetadata()
        try:
            async for chunk in stream:
                if cancel is not None and cancel.cancelled:
                    break

                metadata.response_id = chunk.id
                if chunk.usage is not None:
                    metadata.prompt_tokens = chunk.usage.prompt_tokens
                    metadata.completion_tokens = chunk.usage.completion_tokens
                if not chunk.choices:
                    continue

                choice = chunk.choices[0]
                if choice.delta.content:
                    yield TextPart(value=choice.delta.content)
                if choice.finish_reason:
                    metadata.finish_reason = choice.finish_reason
        finally:
            await stream.close()

        yield StreamEnd(metadata=metadata)

    async def embed(self, texts: list[str], config: ModelConfig) -> list[list[float]]:
        if not texts:
            return []

        try:
            response = await self.client.embeddings.create(model=config.model, input=texts)
            return [item.embedding for item in sorted(response.data, key=lambda d: d.index)]
        except Exception as e:
            logger.error(
                "OpenAI embedding error: {}",
                e,
                extra={"model": config.model, "error_type": type(e).__name__},
            )
            raise EmbeddingError(f"OpenAI embedding error: {e}") from e

    async def close(self):
        """Close OpenAI client."""
        await self.client.close()
