"""
Configuration for HiNATA.

Supports loading from:
1. Environment variables (highest priority)
2. YAML config file
3. Default values (fallback)
"""

import os
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field


class PacketStoreConfig(BaseModel):
    """Packet store configuration."""

    default_page_size: int = 20
    user_page_size: int = 50
    similarity_threshold: float = 0.7
    similarity_limit: int = 10
    top_tags_limit: int = 20


class RelationStoreConfig(BaseModel):
    """Relation store configuration."""

    relation_ttl_days: float = 30.0
    enable_derivation: bool = True
    derivation_strategy: str = "none"  # none, transitive
    max_derivation_depth: int = 3
    derivation_decay: float = 0.5
    second_degree_decay: float = 0.7


class TagStoreConfig(BaseModel):
    """Tag store configuration."""

    unused_tag_ttl_days: float = 90.0
    ai_tag_ttl_days: float = 30.0
    enable_auto_extraction: bool = True
    enable_recommendation: bool = True
    max_hierarchy_depth: int = 5
    seed_system_tags: bool = True


class MaintenanceConfig(BaseModel):
    """Background maintenance configuration."""

    enabled: bool = True
    interval_hours: float = 24.0
    rebuild_indexes: bool = True


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    log_to_file: bool = False
    log_dir: str = "logs"
    file_rotation: str = "10 MB"
    file_retention: str = "7 days"
    compression: str = "zip"
    serialize: bool = True


class APIConfig(BaseModel):
    """REST server configuration."""

    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])


class Config(BaseModel):
    """Main configuration."""

    packets: PacketStoreConfig = Field(default_factory=PacketStoreConfig)
    relations: RelationStoreConfig = Field(default_factory=RelationStoreConfig)
    tags: TagStoreConfig = Field(default_factory=TagStoreConfig)
    maintenance: MaintenanceConfig = Field(default_factory=MaintenanceConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    api: APIConfig = Field(default_factory=APIConfig)

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
            HINATA_RELATION_TTL_DAYS: Age after which idle system relations expire
            HINATA_ENABLE_DERIVATION: Run the derivation strategy on create
            HINATA_DERIVATION_STRATEGY: none or transitive
            HINATA_MAX_DERIVATION_DEPTH: Upper bound for derived chains
            HINATA_UNUSED_TAG_TTL_DAYS: Age after which unused system tags expire
            HINATA_AI_TAG_TTL_DAYS: Lifetime of AI-extracted tags
            HINATA_MAX_HIERARCHY_DEPTH: Maximum tag hierarchy depth
            HINATA_MAINTENANCE_ENABLED: Run the background maintenance worker
            HINATA_MAINTENANCE_INTERVAL_HOURS: Hours between maintenance runs
            HINATA_LOG_LEVEL: Log level
            HINATA_LOG_TO_FILE: Enable the rotating file sink
            HINATA_API_HOST / HINATA_API_PORT: REST server bind address
            HINATA_API_CORS_ORIGINS: Comma-separated allowed origins
            HINATA_PACKET_PAGE_SIZE: Packet search page size when none is given
        """
        if env_file:
            load_dotenv(env_file)
        elif Path(".env").exists():
            load_dotenv()

        def get_env(key: str, default: Any = None) -> Any:
            """Get environment variable with type conversion."""
            value = os.getenv(key)
            if value is None or value == "":
                return default
            if isinstance(default, bool):
                return str(value).lower() in ("true", "1", "yes")
            if isinstance(default, int):
                return int(value)
            if isinstance(default, float):
                return float(value)
            return value

        return cls(
            packets=PacketStoreConfig(
                default_page_size=get_env("HINATA_PACKET_PAGE_SIZE", 20),
                user_page_size=get_env("HINATA_PACKET_USER_PAGE_SIZE", 50),
                similarity_threshold=get_env("HINATA_SIMILARITY_THRESHOLD", 0.7),
                similarity_limit=get_env("HINATA_SIMILARITY_LIMIT", 10),
                top_tags_limit=get_env("HINATA_TOP_TAGS_LIMIT", 20),
            ),
            relations=RelationStoreConfig(
                relation_ttl_days=get_env("HINATA_RELATION_TTL_DAYS", 30.0),
                enable_derivation=get_env("HINATA_ENABLE_DERIVATION", True),
                derivation_strategy=get_env("HINATA_DERIVATION_STRATEGY", "none"),
                max_derivation_depth=get_env("HINATA_MAX_DERIVATION_DEPTH", 3),
                derivation_decay=get_env("HINATA_DERIVATION_DECAY", 0.5),
                second_degree_decay=get_env("HINATA_SECOND_DEGREE_DECAY", 0.7),
            ),
            tags=TagStoreConfig(
                unused_tag_ttl_days=get_env("HINATA_UNUSED_TAG_TTL_DAYS", 90.0),
                ai_tag_ttl_days=get_env("HINATA_AI_TAG_TTL_DAYS", 30.0),
                enable_auto_extraction=get_env("HINATA_ENABLE_AUTO_EXTRACTION", True),
                enable_recommendation=get_env("HINATA_ENABLE_RECOMMENDATION", True),
                max_hierarchy_depth=get_env("HINATA_MAX_HIERARCHY_DEPTH", 5),
                seed_system_tags=get_env("HINATA_SEED_SYSTEM_TAGS", True),
            ),
            maintenance=MaintenanceConfig(
                enabled=get_env("HINATA_MAINTENANCE_ENABLED", True),
                interval_hours=get_env("HINATA_MAINTENANCE_INTERVAL_HOURS", 24.0),
                rebuild_indexes=get_env("HINATA_MAINTENANCE_REBUILD_INDEXES", True),
            ),
            logging=LoggingConfig(
                level=get_env("HINATA_LOG_LEVEL", "INFO"),
                log_to_file=get_env("HINATA_LOG_TO_FILE", False),
                log_dir=get_env("HINATA_LOG_DIR", "logs"),
                file_rotation=get_env("HINATA_LOG_FILE_ROTATION", "10 MB"),
                file_retention=get_env("HINATA_LOG_FILE_RETENTION", "7 days"),
                compression=get_env("HINATA_LOG_COMPRESSION", "zip"),
                serialize=get_env("HINATA_LOG_SERIALIZE", True),
            ),
            api=APIConfig(
                host=get_env("HINATA_API_HOST", "0.0.0.0"),
                port=get_env("HINATA_API_PORT", 8000),
                cors_origins=[
                    origin.strip()
                    for origin in get_env("HINATA_API_CORS_ORIGINS", "*").split(",")
                    if origin.strip()
                ],
            ),
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

        Args:
            yaml_path: Optional path to YAML config
            env_file: Optional path to .env file

        Returns:
            Config instance
        """
        if yaml_path and Path(yaml_path).exists():
            with open(yaml_path) as f:
                config_dict = yaml.safe_load(f) or {}
        else:
            config_dict = {}

        env_config = cls.from_env(env_file)

        # Env sections that differ from the defaults override YAML
        final_dict = {**config_dict}
        default = cls()
        for section in ("packets", "relations", "tags", "maintenance", "logging", "api"):
            if getattr(env_config, section) != getattr(default, section):
                final_dict[section] = getattr(env_config, section).model_dump()

        return cls(**final_dict) if final_dict else env_config
