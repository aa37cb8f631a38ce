"""Fake directory server for testing.

Serves canned entities and lets tests control the identity, epoch and
watermark a refresh reports, without any LDAP connection.
"""

import copy
from typing import Iterable, List, Optional, Sequence, Set, Tuple

from adgroupsync.core.exceptions import DirectoryConnectionError
from adgroupsync.platform.access_control.entity import AdEntity


class FakeDirectoryServer:
    """Test implementation of DirectoryServer.

    Full searches return every entity; searches with a uSNChanged clause
    return entities whose usn_changed is above the requested watermark.
    Entities are copied on every search, as a real server returns new
    objects each time.

    Usage:
        fake = FakeDirectoryServer("dc1", domain="CORP", entities=[group, user])
        fake.set_state(identity="dc1-ntds", epoch="inv-1", watermark=100)
        await catalog.read_everything(fake, include_members=True)

        assert fake.search_count == 1
    """

    def __init__(
        self,
        host_name: str = "dc.example.com",
        domain: str = "EXAMPLE",
        entities: Iterable[AdEntity] = (),
        identity: Optional[str] = "CN=NTDS Settings,CN=DC1",
        epoch: Optional[str] = "invocation-1",
        watermark: int = 0,
    ) -> None:
        """Initialize with canned entities and server state."""
        self._host_name = host_name
        self._domain = domain
        self.entities: List[AdEntity] = list(entities)
        self._next_state: Tuple[Optional[str], Optional[str], int] = (identity, epoch, watermark)
        self._state: Tuple[Optional[str], Optional[str], int] = (None, None, 0)
        self.searches: List[Tuple[str, bool, List[str]]] = []  # ordered log of searches
        self.refresh_count = 0
        self.fail_with: Optional[Exception] = None
        self.closed = False

    @property
    def host_name(self) -> str:
        """Configured host name."""
        return self._host_name

    async def refresh(self) -> None:
        """Publish the state set by set_state(), or raise the injected failure."""
        self.refresh_count += 1
        if self.fail_with is not None:
            raise self.fail_with
        self._state = self._next_state

    async def search(
        self, search_filter: str, include_deleted: bool, attributes: Sequence[str]
    ) -> Set[AdEntity]:
        """Return copies of the matching canned entities."""
        self.searches.append((search_filter, include_deleted, list(attributes)))
        if self.fail_with is not None:
            raise self.fail_with
        include_members = any(a.lower() == "member" for a in attributes)
        watermark = _watermark_from_filter(search_filter)
        results = set()
        for entity in self.entities:
            if watermark is not None and entity.usn_changed < watermark:
                continue
            clone = copy.deepcopy(entity)
            if not include_members:
                clone.members = set()
            results.add(clone)
        return results

    def identity(self) -> Optional[str]:
        """Identity captured by the last refresh."""
        return self._state[0]

    def epoch(self) -> Optional[str]:
        """Epoch captured by the last refresh."""
        return self._state[1]

    def highest_watermark(self) -> int:
        """Watermark captured by the last refresh."""
        return self._state[2]

    def domain_label(self) -> str:
        """NetBIOS domain name."""
        return self._domain

    def close(self) -> None:
        """Record that the server was closed."""
        self.closed = True

    # Test helpers

    def set_state(
        self, identity: Optional[str] = None, epoch: Optional[str] = None, watermark: int = 0
    ) -> None:
        """Set the state the next refresh will report."""
        self._next_state = (identity, epoch, watermark)

    def fail_next(self, message: str = "server unreachable") -> None:
        """Make refresh and search raise a connection error until cleared."""
        self.fail_with = DirectoryConnectionError(self._host_name, message)

    def clear_failure(self) -> None:
        """Stop raising the injected failure."""
        self.fail_with = None

    @property
    def search_count(self) -> int:
        """Total number of searches performed."""
        return len(self.searches)


def _watermark_from_filter(search_filter: str) -> Optional[int]:
    marker = "(uSNChanged>="
    start = search_filter.find(marker)
    if start < 0:
        return None
    end = search_filter.index(")", start)
    return int(search_filter[start + len(marker) : end])
