"""Configuration enums."""

from enum import Enum


class TransportMethod(str, Enum):
    """How a directory server connection is secured."""

    STANDARD = "standard"
    SSL = "ssl"
