"""
Model service abstraction layer for generation and embeddings.

Supported providers:
- Debug (offline, deterministic)
- Ollama (native SDK)
- OpenAI (official SDK)
"""
from tinychat.core.model_service.base import ModelService
from tinychat.core.model_service.debug import DebugModelService
from tinychat.core.model_service.ollama import OllamaModelService
from tinychat.core.model_service.openai import OpenAIModelService
from tinychat.core.model_service.registry import ModelServiceRegistry

__all__ = [
    "ModelService",
    "DebugModelService",
    "OllamaModelService",
    "OpenAIModelService",
    "ModelServiceRegistry",
]
