"""
Factory for creating model services.
"""

from tinychat.config import ServiceConfig
from tinychat.core.model_service.base import ModelService
from tinychat.core.model_service.debug import DebugModelService
from tinychat.core.model_service.ollama import OllamaModelService
from tinychat.core.model_service.openai import OpenAIModelService
from tinychat.core.model_service.registry import ModelServiceRegistry
from tinychat.utils.exceptions import ConfigurationError


class ModelServiceFactory:
    """Factory for creating model services from configuration."""

    @staticmethod
    def create(config: ServiceConfig) -> ModelService:
        """
        Create model service from configuration.

        Args:
            config: Service configuration

        Returns:
            Model service instance

        Raises:
            ConfigurationError: If provider is not supported or misconfigured
        """
        if config.provider == "debug":
            return DebugModelService()
        elif config.provider == "ollama":
            return OllamaModelService(
                host=config.base_url or "http://localhost:11434",
                timeout=config.timeout,
            )
        elif config.provider == "openai":
            if not config.api_key:
                raise ConfigurationError(
                    "OpenAI API key is required", {"provider": config.provider}
                )
            return OpenAIModelService(
                api_key=config.api_key,
                organization=config.organization,
                base_url=config.base_url,
                timeout=config.timeout,
            )
        else:
            raise ConfigurationError(
                f"Unsupported model service provider: {config.provider}",
                {"provider": config.provider},
            )

    @staticmethod
    def create_registry(configs: list[ServiceConfig]) -> ModelServiceRegistry:
        return ModelServiceRegistry([ModelServiceFactory.create(c) for c in configs])
