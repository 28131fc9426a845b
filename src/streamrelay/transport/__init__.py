"""Storage transports for streamrelay.

Provides a factory function to create the configured transport.
"""

from streamrelay.config import StorageConfig
from streamrelay.transport.backend import StorageTransport


def create_transport(config: StorageConfig) -> StorageTransport:
    """Create a storage transport instance based on configuration.

    Supports 'aws' and 'memory' backends.

    Args:
        config: The storage configuration section.

    Returns:
        An uninitialized storage transport.

    Raises:
        ValueError: If the backend name is unknown or required settings are missing.
    """
    backend = config.backend
    if backend == "memory":
        from streamrelay.transport.memory import MemoryTransport

        return MemoryTransport()
    elif backend == "aws":
        if not config.bucket:
            raise ValueError("storage.bucket is required when backend is 'aws'")
        from streamrelay.transport.aws import AWSTransport

        return AWSTransport(
            region=config.aws_region,
            endpoint_url=config.aws_endpoint_url,
            use_path_style=config.aws_use_path_style,
            access_key_id=config.aws_access_key_id,
            secret_access_key=config.aws_secret_access_key,
            verify_bucket=config.bucket if config.verify_bucket else "",
        )
    else:
        raise ValueError(f"Unknown storage backend: {backend}")
