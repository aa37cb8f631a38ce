"""Platform module: access-control catalog and sync orchestration."""
