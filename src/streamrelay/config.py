"""Configuration loading and Pydantic models for streamrelay."""

import os
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


class StorageConfig(BaseModel):
    """Storage transport configuration."""

    backend: str = "aws"
    bucket: str = ""
    aws_region: str = "us-east-1"
    aws_endpoint_url: str = ""
    aws_use_path_style: bool = False
    aws_access_key_id: str = ""
    aws_secret_access_key: str = ""
    verify_bucket: bool = True


class UploadConfig(BaseModel):
    """Object key derivation settings."""

    namespace_field: str = "client"
    key_prefix: str = ""


class ObservabilityConfig(BaseModel):
    """Metrics configuration."""

    metrics: bool = True


class StreamRelayConfig(BaseModel):
    """Top-level streamrelay configuration."""

    server: ServerConfig = Field(default_factory=ServerConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    upload: UploadConfig = Field(default_factory=UploadConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)


# Environment variable -> storage field. Environment wins over YAML.
_STORAGE_ENV = {
    "AWS_BUCKET_NAME": "bucket",
    "AWS_ACCESS_REGION": "aws_region",
    "AWS_ACCESS_KEY_ID": "aws_access_key_id",
    "AWS_ACCESS_KEY_SECRET": "aws_secret_access_key",
    "AWS_ENDPOINT_URL": "aws_endpoint_url",
}


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


def _parse_storage(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the storage section from YAML data.

    Handles nested structure: storage.aws.region -> aws_region, etc.
    """
    if data is None:
        return {}

    result: dict[str, Any] = {
        "backend": data.get("backend", "aws"),
        "bucket": data.get("bucket", ""),
    }

    aws_section = data.get("aws")
    if isinstance(aws_section, dict):
        result["aws_region"] = aws_section.get("region", "us-east-1")
        result["aws_endpoint_url"] = aws_section.get("endpoint_url", "")
        result["aws_use_path_style"] = aws_section.get("use_path_style", False)
        result["aws_access_key_id"] = aws_section.get("access_key_id", "")
        result["aws_secret_access_key"] = aws_section.get("secret_access_key", "")
        result["verify_bucket"] = aws_section.get("verify_bucket", True)

    return result


def _parse_upload(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the upload section from YAML data."""
    if data is None:
        return {}
    return {
        "namespace_field": data.get("namespace_field", "client"),
        "key_prefix": data.get("key_prefix", ""),
    }


def _parse_observability(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the observability section from YAML data."""
    if data is None:
        return {}
    return {"metrics": data.get("metrics", True)}


def apply_env_overrides(
    config: StreamRelayConfig, environ: dict[str, str] | None = None
) -> StreamRelayConfig:
    """Overlay AWS_* environment variables onto the storage section.

    Args:
        config: The configuration to update in place.
        environ: Mapping to read from. Defaults to os.environ.

    Returns:
        The same config object, for chaining.
    """
    env = os.environ if environ is None else environ
    for var, field_name in _STORAGE_ENV.items():
        value = env.get(var)
        if value:
            setattr(config.storage, field_name, value)
    return config


def load_config(path: Path | None = None) -> StreamRelayConfig:
    """Load a StreamRelayConfig from a YAML file plus environment overrides.

    Args:
        path: Path to the YAML configuration file, or None for defaults.

    Returns:
        A fully populated StreamRelayConfig validated by Pydantic.

    Raises:
        FileNotFoundError: If the config file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
    """
    raw: dict[str, Any] = {}
    if path is not None:
        with open(path, "r") as fh:
            raw = yaml.safe_load(fh) or {}

    config = StreamRelayConfig(
        server=ServerConfig(**_parse_server(raw.get("server"))),
        storage=StorageConfig(**_parse_storage(raw.get("storage"))),
        upload=UploadConfig(**_parse_upload(raw.get("upload"))),
        observability=ObservabilityConfig(**_parse_observability(raw.get("observability"))),
    )
    return apply_env_overrides(config)
