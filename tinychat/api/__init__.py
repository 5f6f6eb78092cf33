"""HTTP API for TinyChat."""

from tinychat.api.app import create_app
from tinychat.api.container import Container

__all__ = ["create_app", "Container"]
