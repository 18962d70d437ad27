"""Storage side channel used to resolve vendor file ids to raw bytes.

The concrete store (database + object storage) lives outside this package;
the router only depends on this protocol.
"""

from typing import Optional, Protocol, runtime_checkable

from .types import StoredFile


@runtime_checkable
class FileStore(Protocol):

    async def lookup_file_by_vendor_id(self, vendor_id: str) -> Optional[StoredFile]:
        """Return the stored file registered under a vendor file id, or None."""
        ...

    async def download(self, storage_path: str) -> bytes:
        """Return the bytes at `storage_path`. Raises on any failure."""
        ...
