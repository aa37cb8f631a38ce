"""Coordinator for full and incremental group crawls.

Supports two crawl modes:
1. Full crawl: read every source into a fresh catalog, push all definitions,
   and install the result as the baseline for later incremental crawls.
2. Incremental crawl: read only entities changed since each source's last
   USN watermark into the baseline and push definitions for those entities.

Only one crawl runs at a time. A full crawl waits for a running crawl to
finish; an incremental crawl is skipped if any crawl is running or queued.
"""

import asyncio
from enum import Enum
from typing import List, Optional, Sequence, Set, Tuple

from adgroupsync.core.config import LocalizedNames
from adgroupsync.core.exceptions import CrawlError, DirectoryConnectionError
from adgroupsync.core.logging import ContextualLogger
from adgroupsync.core.logging import logger as default_logger
from adgroupsync.core.protocols import DefinitionSink, DirectoryServer
from adgroupsync.platform.access_control.catalog import GroupCatalog
from adgroupsync.platform.access_control.entity import AdEntity

# Principal names are compared case-insensitively by the consumer.
CASE_SENSITIVE = False


class CrawlState(str, Enum):
    """What the coordinator is currently doing."""

    IDLE = "idle"
    FULL_RUNNING = "full_running"
    INCREMENTAL_RUNNING = "incremental_running"


_ALLOWED_TRANSITIONS = {
    CrawlState.IDLE: {CrawlState.FULL_RUNNING, CrawlState.INCREMENTAL_RUNNING},
    CrawlState.FULL_RUNNING: {CrawlState.IDLE},
    CrawlState.INCREMENTAL_RUNNING: {CrawlState.IDLE},
}


class GroupSyncCoordinator:
    """Runs crawls across all configured directory sources.

    The baseline catalog (last complete crawl) lives only in memory. It is
    replaced after every full crawl and discarded when an incremental crawl
    fails, so the next incremental cycle rebuilds it.
    """

    def __init__(
        self,
        servers: Sequence[DirectoryServer],
        sink: DefinitionSink,
        localized: LocalizedNames,
        namespace: str,
        feed_builtin_groups: bool = False,
        logger: Optional[ContextualLogger] = None,
    ):
        """Initialize the coordinator.

        Args:
            servers: Directory sources, crawled in order.
            sink: Receiver of group definitions.
            localized: Display names for well-known groups and domains.
            namespace: Namespace qualifying every principal.
            feed_builtin_groups: Whether BUILTIN groups keep their members.
            logger: Contextual logger; defaults to the package logger.
        """
        self.servers: List[DirectoryServer] = list(servers)
        self.sink = sink
        self.localized = localized
        self.namespace = namespace
        self.feed_builtin_groups = feed_builtin_groups
        self.logger = logger or default_logger

        self._lock = asyncio.Lock()
        self._state = CrawlState.IDLE
        self._queued_full_crawls = 0
        self._baseline: Optional[GroupCatalog] = None

    @property
    def state(self) -> CrawlState:
        """Current crawl state."""
        return self._state

    @property
    def baseline(self) -> Optional[GroupCatalog]:
        """Catalog of the last complete crawl, if any."""
        return self._baseline

    def discard_baseline(self) -> None:
        """Forget the baseline so the next incremental crawl starts over."""
        self._baseline = None

    def close(self) -> None:
        """Close the connection of every directory source."""
        for server in self.servers:
            server.close()

    # -------------------------------------------------------------------------
    # State machine
    # -------------------------------------------------------------------------

    def _transition(self, new_state: CrawlState) -> None:
        if new_state not in _ALLOWED_TRANSITIONS[self._state]:
            raise RuntimeError(f"Invalid crawl state transition {self._state} -> {new_state}")
        self.logger.debug(f"Crawl state {self._state.value} -> {new_state.value}")
        self._state = new_state

    def _can_start_incremental(self) -> bool:
        """Incremental crawls never wait: any running or queued crawl wins."""
        return (
            self._state == CrawlState.IDLE
            and not self._lock.locked()
            and self._queued_full_crawls == 0
        )

    def _new_catalog(self) -> GroupCatalog:
        return GroupCatalog(
            self.localized, self.namespace, self.feed_builtin_groups, logger=self.logger
        )

    # -------------------------------------------------------------------------
    # Full crawl
    # -------------------------------------------------------------------------

    async def run_full_crawl(self) -> None:
        """Crawl and push all groups from all sources.

        Waits for any running crawl to finish first.

        Raises:
            CrawlError: If any source could not be read; nothing is pushed.
            SinkError: If the push failed.
        """
        self.logger.debug("Full crawl invoked - waiting for lock")
        self._queued_full_crawls += 1
        try:
            await self._lock.acquire()
        finally:
            self._queued_full_crawls -= 1
        try:
            self._transition(CrawlState.FULL_RUNNING)
            self.discard_baseline()
            catalog = await self._make_full_catalog()
            # all servers were able to successfully populate the catalog: do a push
            catalog.resolve_foreign_references(set(catalog.entities))
            definitions = catalog.make_definitions(set(catalog.entities))
            await self.sink.push_group_definitions(definitions, CASE_SENSITIVE)
            self.logger.info(f"Full crawl pushed {len(definitions)} group definitions")
            catalog.log_summary()
            catalog.clear_memberships()
            self._baseline = catalog
        finally:
            self._transition(CrawlState.IDLE)
            self._lock.release()
            self.logger.debug("Full crawl ending - lock released")

    async def _make_full_catalog(self) -> GroupCatalog:
        cumulative = self._new_catalog()
        for server in self.servers:
            try:
                await server.refresh()
                catalog = GroupCatalog(
                    self.localized,
                    self.namespace,
                    self.feed_builtin_groups,
                    logger=self.logger.with_context(source=server.host_name),
                )
                await catalog.read_everything(server, include_members=True)
                cumulative.merge(catalog)
            except DirectoryConnectionError as e:
                raise CrawlError(f"could not get entities from {server.host_name}") from e
        return cumulative

    # -------------------------------------------------------------------------
    # Incremental crawl
    # -------------------------------------------------------------------------

    async def run_incremental_crawl(self) -> bool:
        """Push definitions for groups/users changed since the last crawl.

        Without a baseline, a full crawl is done without a push; that only
        sets up state for later incremental crawls.

        Returns:
            False if the crawl was skipped because another crawl is running.

        Raises:
            CrawlError: If any source could not be read. The baseline is
                discarded and nothing is pushed.
            SinkError: If the push failed.
        """
        if not self._can_start_incremental():
            self.logger.debug("Incremental crawl could not acquire lock; will retry later")
            return False

        async with self._lock:
            self._transition(CrawlState.INCREMENTAL_RUNNING)
            self.logger.debug("Incremental crawl starting - acquired lock")
            try:
                await self._incremental_crawl()
            finally:
                self._transition(CrawlState.IDLE)
                self.logger.debug("Incremental crawl ending - lock released")
        return True

    async def _incremental_crawl(self) -> None:
        if self._baseline is None:
            self.logger.info("No baseline catalog; doing a fetch with no push")
            catalog = await self._make_full_catalog()
            catalog.clear_memberships()
            self._baseline = catalog
            return

        catalog = self._baseline
        changed: Set[AdEntity] = set()
        for server in self.servers:
            previous = self._snapshot(server)
            try:
                await server.refresh()
                changed |= await catalog.read_updates(server, *previous)
            except DirectoryConnectionError as e:
                self.discard_baseline()
                raise CrawlError(f"could not get entities from {server.host_name}") from e

        # all servers were able to successfully update the catalog: do a push
        catalog.resolve_foreign_references(changed)
        definitions = catalog.make_definitions(changed)
        if definitions:
            await self.sink.push_group_definitions(definitions, CASE_SENSITIVE)
            self.logger.info(f"Incremental crawl pushed {len(definitions)} group definitions")
        else:
            self.logger.info(
                f"Incremental crawl found {len(changed)} changed entities; nothing to push"
            )
        catalog.clear_memberships()

    @staticmethod
    def _snapshot(server: DirectoryServer) -> Tuple[Optional[str], Optional[str], int]:
        """Values recorded by the previous refresh of a server."""
        return server.identity(), server.epoch(), server.highest_watermark()
