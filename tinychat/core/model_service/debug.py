"""
Offline model service for development and tests.

Streams a fixed, deterministic reply and embeds text with a hashed
bag-of-words, so the whole pipeline runs without a model server.
"""

import asyncio
import hashlib
import json
import re
from collections.abc import AsyncIterator

import numpy as np

from tinychat.core.model_service.base import ModelService
from tinychat.models.message import (
    AbortPart,
    FilePart,
    Message,
    ModelArg,
    ModelConfig,
    ModelDescriptor,
    OpaqueMetadata,
    TextPart,
    ThoughtPart,
)
from tinychat.models.stream import Delta, StreamEnd
from tinychat.utils.cancellation import CancellationToken
from tinychat.utils.text import extract_text

PIXEL_PNG = (
    "data:image/png;base64,iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mP8z8BQ"
    "DwAEhQGAhKmMIQAAAABJRU5ErkJggg=="
)

_WORD = re.compile(r"\w+")


def _chunks(text: str, size: int = 3) -> list[str]:
    return [text[i : i + size] for i in range(0, len(text), size)]


class DebugModelService(ModelService):
    """
    Deterministic model service.

    Models:
    - ``echo``: thinks, then repeats the prompt's text
    - ``image-sim``: thinks, says a line, sends a 1x1 PNG, says another line
    - ``embed``: embedding-only model

    When ``config.args["schema"]`` is set, ``echo`` answers with an empty
    extraction result as JSON instead.
    """

    name = "debug"

    def __init__(self, delay: float = 0.0, dimension: int = 64):
        """
        Initialize debug service.

        Args:
            delay: Seconds to sleep between deltas
            dimension: Embedding vector size
        """
        self.delay = delay
        self.dimension = dimension

    async def get_models(self) -> list[ModelDescriptor]:
        return [
            ModelDescriptor(name="echo", features=["generate", "schema"]),
            ModelDescriptor(name="image-sim", features=["generate"]),
            ModelDescriptor(name="embed", features=["embed"]),
        ]

    def get_args(self, model: str) -> list[ModelArg]:
        return []

    def get_features(self, model: str) -> list[str]:
        return ["schema"] if model == "echo" else []

    async def generate(
        self,
        instructions: str,
        context: list[Message],
        config: ModelConfig,
        cancel: CancellationToken | None = None,
    ) -> AsyncIterator[Delta]:
        yield ThoughtPart(value="Thinking")
        await asyncio.sleep(self.delay)

        if config.model == "image-sim":
            script: list[Delta] = [TextPart(value=c) for c in _chunks("Thar be images:")]
            script.append(FilePart(name="image.png", mime="image/png", url=PIXEL_PNG, inline=True))
            script.extend(TextPart(value=c) for c in _chunks("Thar hast been images"))
        elif config.args.get("schema"):
            script = [TextPart(value=json.dumps({"summary": "", "memories": []}))]
        else:
            prompt = extract_text(context[-1].data) if context else ""
            script = [TextPart(value=c) for c in _chunks(prompt or "...")]

        for delta in script:
            if cancel is not None and cancel.cancelled:
                yield AbortPart()
                return
            yield delta
            await asyncio.sleep(self.delay)

        yield StreamEnd(metadata=OpaqueMetadata(value={"model": config.model, "deltas": len(script)}))

    async def embed(self, texts: list[str], config: ModelConfig) -> list[list[float]]:
        """Hash each word into a bucket; L2-normalize the counts."""
        vectors = []
        for text in texts:
            vector = np.zeros(self.dimension)
            for word in _WORD.findall(text.lower()):
                digest = hashlib.md5(word.encode()).digest()
                vector[int.from_bytes(digest[:4], "little") % self.dimension] += 1.0
            norm = np.linalg.norm(vector)
            vectors.append((vector / norm if norm else vector).tolist())
        return vectors
