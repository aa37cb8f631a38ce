"""Definition sink adapters."""

from adgroupsync.adapters.sink.fake import FakeDefinitionSink
from adgroupsync.adapters.sink.http import HttpDefinitionSink

__all__ = ["FakeDefinitionSink", "HttpDefinitionSink"]
