"""Argument validation helpers."""

from urllib.parse import urlsplit


def check_positive(value: int | float, name: str) -> None:
    """Reject zero and negative values.

    Raises:
        ValueError: If value is not strictly positive.
    """
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}")


def validate_container_name(name: str) -> None:
    """Validate a container name.

    Args:
        name: Container name.

    Raises:
        ValueError: If name is empty or contains a path separator.
    """
    if not name:
        raise ValueError("Container name cannot be empty")

    if "/" in name or "\\" in name:
        raise ValueError(f"Container name '{name}' must not contain path separators")

    if name in (".", ".."):
        raise ValueError(f"Invalid container name '{name}'")


def validate_key(key: str) -> None:
    """Validate a blob key.

    Raises:
        ValueError: If key is empty or escapes its container.
    """
    if not key:
        raise ValueError("Blob key cannot be empty")

    if key.startswith("/"):
        raise ValueError("Blob key should not start with '/'")

    if ".." in key.split("/"):
        raise ValueError(f"Blob key '{key}' must not contain '..' segments")


def validate_endpoint(endpoint: str) -> None:
    """Check that an endpoint is an absolute http(s) URL.

    Raises:
        ValueError: If endpoint has no scheme or host.
    """
    parts = urlsplit(endpoint)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise ValueError(f"Invalid endpoint '{endpoint}': expected an absolute http(s) URL")
