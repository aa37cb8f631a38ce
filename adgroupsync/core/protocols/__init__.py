"""Protocols for the external collaborators of the sync engine."""

from adgroupsync.core.protocols.directory import DirectoryServer
from adgroupsync.core.protocols.sink import DefinitionSink

__all__ = ["DefinitionSink", "DirectoryServer"]
