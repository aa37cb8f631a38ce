"""Factory and polling loop for the group sync service.

Wires settings into directory adapters, a sink and a coordinator, and
runs full and incremental crawls on their configured intervals.
"""

import asyncio
import time
from typing import Callable, Optional

from adgroupsync.adapters.directory.ldap import LdapDirectoryServer
from adgroupsync.adapters.sink.http import HttpDefinitionSink
from adgroupsync.core.config import ServerConfig, Settings
from adgroupsync.core.exceptions import ConfigurationError, CrawlError, SinkError
from adgroupsync.core.logging import logger
from adgroupsync.core.protocols import DefinitionSink, DirectoryServer
from adgroupsync.platform.sync.coordinator import GroupSyncCoordinator

ServerFactory = Callable[[ServerConfig, Settings], DirectoryServer]


def ldap_server_factory(server: ServerConfig, settings: Settings) -> DirectoryServer:
    """Create an ldap3-backed directory server from its settings."""
    user, password = settings.credentials_for(server)
    return LdapDirectoryServer(
        host=server.host,
        port=server.port,
        method=server.method,
        user=user,
        password=password,
        read_timeout_secs=settings.ldap_read_timeout_secs,
    )


def build_coordinator(
    settings: Settings,
    sink: Optional[DefinitionSink] = None,
    server_factory: ServerFactory = ldap_server_factory,
) -> GroupSyncCoordinator:
    """Build a coordinator for every configured server.

    Raises:
        ConfigurationError: If no server is configured, or no sink is given
            and no sink URL is configured.
    """
    if not settings.servers:
        raise ConfigurationError("No directory servers configured")
    if sink is None:
        if not settings.sink_url:
            raise ConfigurationError("No definition sink configured")
        sink = HttpDefinitionSink(settings.sink_url)

    logger.info(f"Common namespace: {settings.namespace}")
    servers = []
    for server in settings.servers:
        logger.info(f"AD server spec: {server.redacted()}")
        servers.append(server_factory(server, settings))

    return GroupSyncCoordinator(
        servers=servers,
        sink=sink,
        localized=settings.localized,
        namespace=settings.namespace,
        feed_builtin_groups=settings.feed_builtin_groups,
    )


async def run_polling_loop(
    coordinator: GroupSyncCoordinator,
    settings: Settings,
    stop_event: asyncio.Event,
) -> None:
    """Run a full crawl now and on every full interval, incremental crawls in between.

    Failed cycles are logged; the loop keeps going until stop_event is set.
    A failed full crawl is retried on the next cycle.
    """
    next_full = time.monotonic()
    while not stop_event.is_set():
        try:
            if time.monotonic() >= next_full:
                await coordinator.run_full_crawl()
                next_full = time.monotonic() + settings.full_crawl_interval_secs
            else:
                await coordinator.run_incremental_crawl()
        except (CrawlError, SinkError) as e:
            logger.error(f"Crawl cycle failed: {e}")

        try:
            await asyncio.wait_for(
                stop_event.wait(), timeout=settings.incremental_crawl_interval_secs
            )
        except asyncio.TimeoutError:
            pass
