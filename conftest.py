"""Root conftest for pytest configuration and shared fixtures.

This conftest is loaded before both testpaths (tests/ and adgroupsync/),
making its fixtures available to centralized tests AND colocated adapter tests.
"""

import pytest

from adgroupsync.core.config import LocalizedNames
from adgroupsync.platform.access_control.entity import AdEntity
from adgroupsync.platform.access_control.schemas import PrincipalKind

# Register pytest-asyncio plugin at the root level
pytest_plugins = ("pytest_asyncio",)

DOMAIN_SID = "S-1-5-21-1004336348-1177238915-682003330"


# ---------------------------------------------------------------------------
# Shared fake fixtures (individual protocol fakes)
# ---------------------------------------------------------------------------


@pytest.fixture
def fake_directory():
    """Fake DirectoryServer with no entities."""
    from adgroupsync.adapters.directory.fake import FakeDirectoryServer

    return FakeDirectoryServer(host_name="dc1.example.com", domain="EXAMPLE")


@pytest.fixture
def fake_sink():
    """Fake DefinitionSink that records pushes."""
    from adgroupsync.adapters.sink.fake import FakeDefinitionSink

    return FakeDefinitionSink()


@pytest.fixture
def localized():
    """English display names for well-known groups."""
    return LocalizedNames()


# ---------------------------------------------------------------------------
# Entity builders
# ---------------------------------------------------------------------------


@pytest.fixture
def make_group():
    """Build a directory group entity with a RID in the test domain."""

    def _make_group(
        rid: int,
        name: str,
        members=(),
        usn: int = 1,
        user_account_control: int = 0,
        domain_sid: str = DOMAIN_SID,
        ou: str = "OU=Groups,DC=example,DC=com",
    ) -> AdEntity:
        return AdEntity(
            sid=f"{domain_sid}-{rid}",
            dn=f"CN={name},{ou}",
            sam_account_name=name,
            user_account_control=user_account_control,
            usn_changed=usn,
            kind=PrincipalKind.GROUP,
            members=set(members),
        )

    return _make_group


@pytest.fixture
def make_user():
    """Build a directory user entity with a RID in the test domain."""

    def _make_user(
        rid: int,
        name: str,
        primary_group_rid: int = 513,
        usn: int = 1,
        user_account_control: int = 512,
        domain_sid: str = DOMAIN_SID,
        ou: str = "OU=Users,DC=example,DC=com",
    ) -> AdEntity:
        return AdEntity(
            sid=f"{domain_sid}-{rid}",
            dn=f"CN={name},{ou}",
            sam_account_name=name,
            user_principal_name=f"{name}@example.com",
            primary_group_sid=f"{domain_sid}-{primary_group_rid}",
            user_account_control=user_account_control,
            usn_changed=usn,
            kind=PrincipalKind.USER,
        )

    return _make_user
