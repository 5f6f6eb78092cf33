"""
Factory modules for creating TinyChat components.
"""

from tinychat.core.factory.model_service_factory import ModelServiceFactory

__all__ = [
    "ModelServiceFactory",
]
