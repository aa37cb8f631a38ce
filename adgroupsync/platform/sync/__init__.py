"""Sync orchestration for directory group crawls."""

from adgroupsync.platform.sync.coordinator import CrawlState, GroupSyncCoordinator

__all__ = ["CrawlState", "GroupSyncCoordinator"]
