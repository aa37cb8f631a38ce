"""DefinitionSink protocol for delivering group definitions.

A push is all-or-nothing: either the whole mapping is accepted or the
call raises and nothing should be assumed delivered.
"""

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from adgroupsync.platform.access_control.schemas import GroupDefinitions


@runtime_checkable
class DefinitionSink(Protocol):
    """Protocol for the downstream access-control consumer."""

    async def push_group_definitions(
        self, definitions: "GroupDefinitions", case_sensitive: bool
    ) -> None:
        """Deliver a group -> ordered members mapping.

        Args:
            definitions: Group principal to its member principals.
            case_sensitive: Whether principal names compare case-sensitively.

        Raises:
            SinkError: If the definitions were not accepted.
        """
        ...
