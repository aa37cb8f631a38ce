"""adgroupsync: Active Directory group catalog and definition sync."""

__version__ = "0.1.0"
