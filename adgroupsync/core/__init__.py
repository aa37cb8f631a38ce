"""Core module for adgroupsync."""
