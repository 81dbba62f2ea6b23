"""Blob URL helpers.

Blob URLs are path-style (``https://<endpoint>/<container>/<name>``) or
``s3://<container>/<name>``. Query strings (pre-signed URL signatures) are
ignored.
"""

from urllib.parse import unquote, urlsplit


def get_container_and_file_name_from_url(url: str) -> tuple[str, str]:
    """Split a blob URL into its container and file name.

    Args:
        url: Blob URL, optionally carrying a query string.

    Returns:
        Tuple of (container, file_name); the file name is URL-decoded and
        may contain ``/`` for nested keys.

    Raises:
        ValueError: If the URL does not name both a container and a file.
    """
    parts = urlsplit(url)
    if parts.scheme == "s3":
        container = parts.netloc
        name = parts.path.lstrip("/")
    else:
        path = parts.path.lstrip("/")
        container, _, name = path.partition("/")

    if not container or not name:
        raise ValueError(f"URL does not reference a blob: '{url}'")
    return unquote(container), unquote(name)


def get_container_name_from_url(url: str) -> str:
    return get_container_and_file_name_from_url(url)[0]


def get_file_name_from_url(url: str) -> str:
    return get_container_and_file_name_from_url(url)[1]
