"""
Configuration for TinyChat.

Supports loading from:
1. Environment variables (highest priority)
2. YAML config file
3. Default values (fallback)
"""

import os
from pathlib import Path
from typing import Any, Literal

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field


class StorageConfig(BaseModel):
    """Chat storage configuration."""

    db_path: str = "data/tinychat.db"


class ServiceConfig(BaseModel):
    """One model service backend."""

    provider: Literal["debug", "ollama", "openai"] = "debug"
    base_url: str | None = None
    api_key: str | None = None
    organization: str | None = None
    timeout: float = 120.0


class EmbeddingsConfig(BaseModel):
    """Embedding job configuration."""

    service: str | None = None  # None disables embeddings and memory context
    model: str = "nomic-embed-text"
    batch_size: int = Field(default=100, ge=1)
    batch_delay: float = Field(default=1.0, ge=0.0)


class MemoryConfig(BaseModel):
    """Memory extraction configuration."""

    enabled: bool = False
    service: str = "debug"
    model: str = "echo"
    stale_after_hours: float = 1.0  # chats idle at least this long get memorized
    chat_delay: float = 1.0


class RelevanceConfig(BaseModel):
    """Relevant memory selection."""

    max_count: int = 10
    min_count: int = 1
    diversity_weight: float = Field(default=0.3, ge=0.0, le=1.0)


class GenerationConfig(BaseModel):
    """Reply generation configuration."""

    flush_interval_ms: int = Field(default=33, ge=0)
    instructions: str = ""


class PairingConfig(BaseModel):
    """Device pairing configuration."""

    ttl_seconds: int = Field(default=300, ge=1)


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    log_to_file: bool = True
    log_dir: str = "logs"
    file_rotation: str = "10 MB"
    file_retention: str = "7 days"
    compression: str = "zip"
    serialize: bool = True


class Config(BaseModel):
    """Main configuration."""

    storage: StorageConfig = Field(default_factory=StorageConfig)
    services: list[ServiceConfig] = Field(default_factory=lambda: [ServiceConfig()])
    embeddings: EmbeddingsConfig = Field(default_factory=EmbeddingsConfig)
    memory: MemoryConfig = Field(default_factory=MemoryConfig)
    relevance: RelevanceConfig = Field(default_factory=RelevanceConfig)
    generation: GenerationConfig = Field(default_factory=GenerationConfig)
    pairing: PairingConfig = Field(default_factory=PairingConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    # Identity used when a request carries no user header
    default_user_id: str = "local"

    @classmethod
    def from_env(cls, env_file: str | Path | None = None) -> "Config":
        """
        Load configuration from environment variables.

        Priority: .env file -> system environment variables -> defaults

        Args:
            env_file: Optional path to .env file (default: .env in project root)

        Returns:
            Config instance

        Environment variables:
            TINYCHAT_DB_PATH: SQLite database path
            TINYCHAT_SERVICES: Comma-separated providers (debug, ollama, openai)
            TINYCHAT_<PROVIDER>_BASE_URL: Service base URL
            TINYCHAT_<PROVIDER>_API_KEY: Service API key
            TINYCHAT_<PROVIDER>_TIMEOUT: Service request timeout
            TINYCHAT_EMBEDDING_SERVICE: Service used for embeddings (unset disables)
            TINYCHAT_EMBEDDING_MODEL: Embedding model name
            TINYCHAT_MEMORY_ENABLED: Run memory extraction
            TINYCHAT_MEMORY_SERVICE: Service used for memory extraction
            TINYCHAT_MEMORY_MODEL: Memory extraction model
            TINYCHAT_FLUSH_INTERVAL_MS: Minimum time between reply snapshots
            TINYCHAT_INSTRUCTIONS: Extra instructions for every reply
            TINYCHAT_PAIRING_TTL: Pairing lifetime in seconds
            TINYCHAT_DEFAULT_USER: Identity used without an X-User-Id header
        """
        # Load .env file if provided or exists
        if env_file:
            load_dotenv(env_file)
        elif Path(".env").exists():
            load_dotenv()

        def get_env(key: str, default: Any = None) -> Any:
            """Get environment variable with type conversion."""
            value = os.getenv(key)
            if value is None:
                return default
            # If value is empty string, return default
            if value == "":
                return default
            # Convert boolean strings
            if isinstance(default, bool):
                return str(value).lower() in ("true", "1", "yes")
            # Convert numeric strings
            if isinstance(default, int):
                return int(value)
            if isinstance(default, float):
                return float(value)
            return value

        providers = [
            p.strip() for p in get_env("TINYCHAT_SERVICES", "debug").split(",") if p.strip()
        ]
        services = [
            ServiceConfig(
                provider=provider,
                base_url=get_env(f"TINYCHAT_{provider.upper()}_BASE_URL"),
                api_key=get_env(f"TINYCHAT_{provider.upper()}_API_KEY"),
                organization=get_env(f"TINYCHAT_{provider.upper()}_ORGANIZATION"),
                timeout=get_env(f"TINYCHAT_{provider.upper()}_TIMEOUT", 120.0),
            )
            for provider in providers
        ]

        return cls(
            storage=StorageConfig(db_path=get_env("TINYCHAT_DB_PATH", "data/tinychat.db")),
            services=services,
            embeddings=EmbeddingsConfig(
                service=get_env("TINYCHAT_EMBEDDING_SERVICE"),
                model=get_env("TINYCHAT_EMBEDDING_MODEL", "nomic-embed-text"),
                batch_size=get_env("TINYCHAT_EMBEDDING_BATCH_SIZE", 100),
                batch_delay=get_env("TINYCHAT_EMBEDDING_BATCH_DELAY", 1.0),
            ),
            memory=MemoryConfig(
                enabled=get_env("TINYCHAT_MEMORY_ENABLED", False),
                service=get_env("TINYCHAT_MEMORY_SERVICE", "debug"),
                model=get_env("TINYCHAT_MEMORY_MODEL", "echo"),
                stale_after_hours=get_env("TINYCHAT_MEMORY_STALE_AFTER_HOURS", 1.0),
                chat_delay=get_env("TINYCHAT_MEMORY_CHAT_DELAY", 1.0),
            ),
            relevance=RelevanceConfig(
                max_count=get_env("TINYCHAT_RELEVANCE_MAX_COUNT", 10),
                min_count=get_env("TINYCHAT_RELEVANCE_MIN_COUNT", 1),
                diversity_weight=get_env("TINYCHAT_RELEVANCE_DIVERSITY_WEIGHT", 0.3),
            ),
            generation=GenerationConfig(
                flush_interval_ms=get_env("TINYCHAT_FLUSH_INTERVAL_MS", 33),
                instructions=get_env("TINYCHAT_INSTRUCTIONS", ""),
            ),
            pairing=PairingConfig(ttl_seconds=get_env("TINYCHAT_PAIRING_TTL", 300)),
            logging=LoggingConfig(
                level=get_env("TINYCHAT_LOG_LEVEL", "INFO"),
                log_to_file=get_env("TINYCHAT_LOG_TO_FILE", True),
                log_dir=get_env("TINYCHAT_LOG_DIR", "logs"),
                file_rotation=get_env("TINYCHAT_LOG_FILE_ROTATION", "10 MB"),
                file_retention=get_env("TINYCHAT_LOG_FILE_RETENTION", "7 days"),
                compression=get_env("TINYCHAT_LOG_COMPRESSION", "zip"),
                serialize=get_env("TINYCHAT_LOG_SERIALIZE", True),
            ),
            default_user_id=get_env("TINYCHAT_DEFAULT_USER", "local"),
        )

    @classmethod
    def from_yaml(cls, yaml_path: str | Path) -> "Config":
        """
        Load configuration from YAML file.

        Args:
            yaml_path: Path to YAML configuration file

        Returns:
            Config instance

        Raises:
            FileNotFoundError: If YAML file doesn't exist
            yaml.YAMLError: If YAML is invalid
        """
        yaml_path = Path(yaml_path)
        if not yaml_path.exists():
            raise FileNotFoundError(f"Config file not found: {yaml_path}")

        with open(yaml_path) as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)

    @classmethod
    def from_env_or_yaml(
        cls, yaml_path: str | Path | None = None, env_file: str | Path | None = None
    ) -> "Config":
        """
        Load configuration with priority: env vars > YAML > defaults.

        Sections whose env values differ from the defaults replace the YAML
        section as a whole.

        Args:
            yaml_path: Optional path to YAML config
            env_file: Optional path to .env file

        Returns:
            Config instance
        """
        # Start with YAML if provided
        if yaml_path and Path(yaml_path).exists():
            with open(yaml_path) as f:
                config_dict = yaml.safe_load(f) or {}
        else:
            config_dict = {}

        env_config = cls.from_env(env_file)
        default = cls()

        # Apply env overrides (non-default values)
        final_dict = {**config_dict}
        for section in (
            "storage",
            "services",
            "embeddings",
            "memory",
            "relevance",
            "generation",
            "pairing",
            "logging",
            "default_user_id",
        ):
            value = getattr(env_config, section)
            if value != getattr(default, section):
                final_dict[section] = (
                    [v.model_dump() for v in value]
                    if isinstance(value, list)
                    else value.model_dump()
                    if isinstance(value, BaseModel)
                    else value
                )

        return cls(**final_dict)


# Default config instance
default_config = Config()
