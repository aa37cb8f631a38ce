"""Fake definition sink for testing.

Records every push so tests can assert on what would have been delivered.
"""

from typing import List, Optional, Tuple

from adgroupsync.core.exceptions import SinkError
from adgroupsync.platform.access_control.schemas import GroupDefinitions, Principal


class FakeDefinitionSink:
    """Test implementation of DefinitionSink.

    Usage:
        sink = FakeDefinitionSink()
        await coordinator.run_full_crawl()

        assert sink.push_count == 1
        assert sink.members_of("Domain Users@CORP") == [...]
    """

    def __init__(self) -> None:
        """Initialize with no recorded pushes."""
        self.pushes: List[Tuple[GroupDefinitions, bool]] = []
        self.fail_with: Optional[Exception] = None

    async def push_group_definitions(
        self, definitions: GroupDefinitions, case_sensitive: bool
    ) -> None:
        """Record the push, or raise the injected failure."""
        if self.fail_with is not None:
            raise self.fail_with
        self.pushes.append((dict(definitions), case_sensitive))

    # Test helpers

    def fail_next(self, message: str = "consumer unavailable") -> None:
        """Make pushes raise SinkError until cleared."""
        self.fail_with = SinkError(message)

    @property
    def push_count(self) -> int:
        """Number of successful pushes."""
        return len(self.pushes)

    @property
    def last_push(self) -> GroupDefinitions:
        """Definitions of the most recent push."""
        return self.pushes[-1][0]

    def members_of(self, group_name: str, push_index: int = -1) -> Optional[List[Principal]]:
        """Members pushed for a group name, or None if the group was not pushed."""
        for group, members in self.pushes[push_index][0].items():
            if group.name == group_name:
                return members
        return None

    def clear(self) -> None:
        """Reset all state."""
        self.pushes.clear()
        self.fail_with = None
