"""DirectoryServer protocol for reading principals from a directory.

One DirectoryServer wraps one connection to a domain controller. The
catalog only ever searches it and reads the watermark accessors; the
connection lifecycle belongs to the implementation.

Usage:
    await server.refresh()
    if server.highest_watermark() != previous_watermark:
        entities = await server.search(search_filter, False, attributes)
"""

from typing import TYPE_CHECKING, Optional, Protocol, Sequence, Set, runtime_checkable

if TYPE_CHECKING:
    from adgroupsync.platform.access_control.entity import AdEntity


@runtime_checkable
class DirectoryServer(Protocol):
    """Protocol for a single directory source.

    The identity, epoch and watermark accessors return the values captured
    by the most recent ``refresh()``; they do not contact the server.
    """

    @property
    def host_name(self) -> str:
        """Configured host name, used for logging and origin tracking."""
        ...

    async def refresh(self) -> None:
        """Re-validate the connection and re-read the server state.

        Raises:
            DirectoryConnectionError: If the server cannot be reached.
        """
        ...

    async def search(
        self, search_filter: str, include_deleted: bool, attributes: Sequence[str]
    ) -> Set["AdEntity"]:
        """Run a subtree search and return the parsed entities.

        Args:
            search_filter: LDAP filter expression.
            include_deleted: Whether tombstoned objects are returned too.
            attributes: Attributes to fetch for every entry.

        Raises:
            DirectoryConnectionError: On connectivity or protocol failures.
        """
        ...

    def identity(self) -> Optional[str]:
        """Name of the directory service instance (dsServiceName)."""
        ...

    def epoch(self) -> Optional[str]:
        """Generation marker that changes on restore from backup (invocationID)."""
        ...

    def highest_watermark(self) -> int:
        """Highest committed change sequence number (highestCommittedUSN)."""
        ...

    def domain_label(self) -> str:
        """Short domain name (NetBIOS name) used to qualify principals."""
        ...

    def close(self) -> None:
        """Release the connection; the next refresh reconnects."""
        ...
