"""
Registry of configured model services.
"""

import asyncio

from tinychat.core.model_service.base import ModelService
from tinychat.models.message import ModelDescriptor
from tinychat.utils.exceptions import NotFoundError
from tinychat.utils.logger import get_logger

logger = get_logger(__name__)


class ModelServiceRegistry:
    """Looks up model services by name and aggregates their model listings."""

    def __init__(self, services: list[ModelService] | None = None):
        self._services: dict[str, ModelService] = {}
        for service in services or []:
            self.register(service)

    def register(self, service: ModelService) -> None:
        if service.name in self._services:
            logger.warning(f"Replacing model service '{service.name}'")
        self._services[service.name] = service

    def get(self, name: str) -> ModelService:
        """
        Find a service by name.

        Raises:
            NotFoundError: If no service has that name
        """
        service = self._services.get(name)
        if service is None:
            raise NotFoundError(
                f"Model service not found: {name}",
                {"service": name, "available": list(self._services)},
            )
        return service

    def names(self) -> list[str]:
        return list(self._services)

    async def list_models(self) -> dict[str, list[ModelDescriptor]]:
        """
        Models of every service, keyed by service name.

        A service that fails to answer is logged and listed with no models.
        """
        names = list(self._services)
        results = await asyncio.gather(
            *(self._services[name].get_models() for name in names), return_exceptions=True
        )

        listing: dict[str, list[ModelDescriptor]] = {}
        for name, result in zip(names, results):
            if isinstance(result, Exception):
                logger.warning(
                    "Could not list models of '{}': {}",
                    name,
                    result,
                    extra={"service": name, "error_type": type(result).__name__},
                )
                listing[name] = []
            else:
                listing[name] = result
        return listing

    async def close(self) -> None:
        for service in self._services.values():
            await service.close()
