"""Access control schemas (Pydantic models)."""

from enum import Enum
from typing import Dict, List

from pydantic import BaseModel, Field, field_validator


class PrincipalKind(str, Enum):
    """Kind of a principal in a group definition."""

    USER = "user"
    GROUP = "group"


class Principal(BaseModel):
    """A user or group identity as understood by the access-control consumer.

    Names follow the consumer's naming contract: non-empty, no surrounding
    whitespace and no control characters. Constructing a Principal with an
    invalid name raises ``pydantic.ValidationError``.

    Examples:
    - Principal(kind=PrincipalKind.USER, name="jdoe@CORP", namespace="Default")
    - Principal(kind=PrincipalKind.GROUP, name="Everyone", namespace="Default")
    """

    kind: PrincipalKind
    name: str = Field(description="accountName@domainLabel, or bare accountName")
    namespace: str = Field(description="Namespace qualifying the name")

    model_config = {"frozen": True}

    @field_validator("name", "namespace")
    @classmethod
    def validate_name(cls, value: str) -> str:
        """Reject names the consumer cannot store."""
        if not value:
            raise ValueError("must not be empty")
        if value != value.strip():
            raise ValueError("must not have leading or trailing whitespace")
        if any(ord(ch) < 0x20 or ord(ch) == 0x7F for ch in value):
            raise ValueError("must not contain control characters")
        return value


GroupDefinitions = Dict[Principal, List[Principal]]
