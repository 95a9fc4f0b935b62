"""
Storage adapters for publishing build artifacts to S3, GCS, or a local directory.

This package provides a unified interface for the artifact publisher through
the StorageAdapter abstract base class.

Adapters:
- S3Adapter: Amazon S3 and S3-compatible storage (boto3)
- GCSAdapter: Google Cloud Storage (google-cloud-storage)
- LocalAdapter: Local filesystem (no dependencies)

Usage:
    >>> from macbridge_agent.remote import create_adapter
    >>> adapter = create_adapter({"backend": "s3", "bucket": "builds"})
    >>> success, message = adapter.test_connection()

Note:
    Cloud adapters are lazily imported to avoid requiring their dependencies
    when only local publishing is needed.
"""

from typing import Any, Dict

from macbridge_agent.remote.base import StorageAdapter
from macbridge_agent.remote.local_adapter import LocalAdapter

# Lazy imports for cloud adapters to avoid requiring boto3/google-cloud-storage
# when they're not needed (e.g., in tests that only use local publishing)
_lazy_imports = {
    "S3Adapter": ("macbridge_agent.remote.s3_adapter", "pip install macbridge-agent[s3]"),
    "GCSAdapter": ("macbridge_agent.remote.gcs_adapter", "pip install macbridge-agent[gcs]"),
}


def __getattr__(name: str):
    """Lazily import cloud adapters when accessed."""
    if name in _lazy_imports:
        import importlib
        module_path, install_hint = _lazy_imports[name]
        try:
            module = importlib.import_module(module_path)
        except ModuleNotFoundError as e:
            raise ModuleNotFoundError(
                f"{name} requires additional dependencies. "
                f"Install them with: {install_hint}"
            ) from e
        return getattr(module, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def create_adapter(settings: Dict[str, Any]) -> StorageAdapter:
    """
    Build the storage adapter described by the `storage` configuration section.

    Args:
        settings: Mapping with "backend" ("local", "s3" or "gcs") and the
            backend's options (bucket, region, public_base_url, local_dir,
            credentials)

    Raises:
        ValueError: If the backend is unknown or misconfigured
    """
    backend = settings.get("backend", "local")
    credentials = settings.get("credentials") or {}
    public_base_url = settings.get("public_base_url") or None

    if backend == "s3":
        return __getattr__("S3Adapter")(
            bucket=settings.get("bucket", ""),
            credentials=credentials,
            region=settings.get("region") or None,
            public_base_url=public_base_url,
        )
    if backend == "gcs":
        return __getattr__("GCSAdapter")(
            bucket=settings.get("bucket", ""),
            credentials=credentials,
            public_base_url=public_base_url,
        )
    if backend == "local":
        directory = settings.get("local_dir")
        if not directory:
            raise ValueError("storage.local_dir is required for the local backend")
        return LocalAdapter(directory, public_base_url=public_base_url)

    raise ValueError(f"Unsupported storage backend: {backend}")


__all__ = [
    "StorageAdapter",
    "S3Adapter",
    "GCSAdapter",
    "LocalAdapter",
    "create_adapter",
]
