"""Configuration loading and Pydantic models for BucketBird."""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field


class ServerConfig(BaseModel):
    """Server binding and runtime configuration."""

    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "INFO"
    log_format: str = "text"
    shutdown_timeout: int = 30


class StoreConfig(BaseModel):
    """Object store connection configuration.

    ``backend`` is either ``s3`` (any S3-compatible endpoint) or ``memory``
    (an in-process store, useful for demos and tests).
    """

    backend: str = "s3"
    endpoint: str = ""
    region: str = "us-east-1"
    access_key: str = ""
    secret_key: str = ""
    use_ssl: bool = True
    memory_page_size: int = 1000


class MetadataConfig(BaseModel):
    """Bucket size persistence configuration."""

    engine: str = "memory"
    sqlite_path: str = "./data/bucketbird.db"


class ArchiveConfig(BaseModel):
    """Zip streaming configuration."""

    queue_size: int = 8
    chunk_size: int = 64 * 1024
    compression: str = "deflate"


class PresignConfig(BaseModel):
    """Presigned URL defaults."""

    default_expires_seconds: int = 15 * 60


class ObservabilityConfig(BaseModel):
    """Metrics and health check toggles."""

    metrics: bool = True
    health_check: bool = True


class BucketBirdConfig(BaseModel):
    """Top-level BucketBird configuration."""

    server: ServerConfig = Field(default_factory=ServerConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    metadata: MetadataConfig = Field(default_factory=MetadataConfig)
    archive: ArchiveConfig = Field(default_factory=ArchiveConfig)
    presign: PresignConfig = Field(default_factory=PresignConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)


def _parse_server(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the server section from YAML data into a dict for Pydantic."""
    if data is None:
        return {}
    return {
        "host": data.get("host", "0.0.0.0"),
        "port": data.get("port", 8080),
        "log_level": data.get("log_level", "INFO"),
        "log_format": data.get("log_format", "text"),
        "shutdown_timeout": data.get("shutdown_timeout", 30),
    }


def _parse_store(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the store section from YAML data.

    Handles nested structure: store.memory.page_size -> memory_page_size
    """
    if data is None:
        return {}
    result: dict[str, Any] = {
        "backend": data.get("backend", "s3"),
        "endpoint": data.get("endpoint", ""),
        "region": data.get("region", "us-east-1"),
        "access_key": data.get("access_key", ""),
        "secret_key": data.get("secret_key", ""),
        "use_ssl": data.get("use_ssl", True),
    }
    memory_section = data.get("memory")
    if isinstance(memory_section, dict):
        result["memory_page_size"] = memory_section.get("page_size", 1000)
    return result


def _parse_metadata(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the metadata section from YAML data.

    Handles nested structure: metadata.sqlite.path -> sqlite_path
    """
    if data is None:
        return {}
    result: dict[str, Any] = {"engine": data.get("engine", "memory")}
    sqlite_section = data.get("sqlite")
    if isinstance(sqlite_section, dict):
        result["sqlite_path"] = sqlite_section.get("path", "./data/bucketbird.db")
    return result


def _parse_archive(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the archive section from YAML data."""
    if data is None:
        return {}
    return {
        "queue_size": data.get("queue_size", 8),
        "chunk_size": data.get("chunk_size", 64 * 1024),
        "compression": data.get("compression", "deflate"),
    }


def _parse_presign(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the presign section from YAML data."""
    if data is None:
        return {}
    return {"default_expires_seconds": data.get("default_expires_seconds", 15 * 60)}


def _parse_observability(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the observability section from YAML data."""
    if data is None:
        return {}
    return {
        "metrics": data.get("metrics", True),
        "health_check": data.get("health_check", True),
    }


def load_config(path: Path) -> BucketBirdConfig:
    """Load a BucketBirdConfig from a YAML file.

    Args:
        path: Path to the YAML configuration file.

    Returns:
        A fully populated BucketBirdConfig validated by Pydantic.

    Raises:
        FileNotFoundError: If the config file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
    """
    with open(path, "r") as fh:
        raw: dict[str, Any] = yaml.safe_load(fh) or {}

    return BucketBirdConfig(
        server=ServerConfig(**_parse_server(raw.get("server"))),
        store=StoreConfig(**_parse_store(raw.get("store"))),
        metadata=MetadataConfig(**_parse_metadata(raw.get("metadata"))),
        archive=ArchiveConfig(**_parse_archive(raw.get("archive"))),
        presign=PresignConfig(**_parse_presign(raw.get("presign"))),
        observability=ObservabilityConfig(**_parse_observability(raw.get("observability"))),
    )
