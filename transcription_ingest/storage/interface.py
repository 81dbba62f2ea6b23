"""Object store protocol consumed by dispositions and reconciliation."""

from typing import Protocol


class ObjectStore(Protocol):
    """Protocol for blob stores with container-scoped names."""

    def read(self, container: str, name: str) -> bytes: ...

    def write(
        self, container: str, name: str, data: bytes | str, content_type: str = ""
    ) -> None: ...

    def move(
        self,
        src_container: str,
        src_name: str,
        dst_container: str,
        dst_name: str,
        overwrite: bool = False,
    ) -> bool: ...

    def delete(self, container: str, name: str) -> None: ...

    def create_temporary_access_url(self, url: str) -> str: ...
