"""Directory server adapters."""

from adgroupsync.adapters.directory.fake import FakeDirectoryServer
from adgroupsync.adapters.directory.ldap import LdapDirectoryServer

__all__ = ["FakeDirectoryServer", "LdapDirectoryServer"]
