"""Directory principal records.

This module turns raw directory attributes into canonical principal records:
- Decoding binary security identifiers (objectSid) into "S-1-5-21-..." text
- Decoding binary object GUIDs for display
- Deriving the primary group SID from the domain SID and primaryGroupID
- Extracting common names from distinguished names (honouring escapes)
- Detecting ForeignSecurityPrincipals placeholders for cross-domain members
"""

import re
import struct
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set

from adgroupsync.core.exceptions import InvalidEntityError
from adgroupsync.platform.access_control.schemas import PrincipalKind

# userAccountControl flag for disabled accounts
ADS_UF_ACCOUNTDISABLE = 0x00000002

# SIDs of the local BUILTIN domain
BUILTIN_SID_PREFIX = "S-1-5-32-"

# Placeholder entries for principals of trusted domains, e.g.
# "CN=S-1-5-21-1004336348-1177238915-682003330-512,CN=ForeignSecurityPrincipals,DC=corp,DC=com"
_FOREIGN_PRINCIPAL_PATTERN = re.compile(
    r"^[^=,]+=(S-\d+-\d+(?:-\d+)*),cn=foreignsecurityprincipals,",
    re.IGNORECASE,
)

_SID_HEADER_LENGTH = 8
_MAX_SUB_AUTHORITIES = 255


# -------------------------------------------------------------------------
# Binary identifier codecs
# -------------------------------------------------------------------------


def decode_sid(data: bytes) -> str:
    """Convert a binary SID to its canonical string form.

    SID structure:
        Byte 0: Revision
        Byte 1: Number of sub-authorities (N)
        Bytes 2-7: Identifier authority (big-endian)
        Remaining: N sub-authorities (little-endian 32-bit)

    Args:
        data: Binary SID as returned for objectSid.

    Returns:
        String SID (e.g., "S-1-5-21-3623811015-3361044348-30300820-1013")

    Raises:
        InvalidEntityError: If the length does not match the header.
    """
    if not isinstance(data, (bytes, bytearray)):
        raise InvalidEntityError(f"SID must be bytes, got {type(data).__name__}")
    if len(data) < _SID_HEADER_LENGTH:
        raise InvalidEntityError(f"SID too short: {len(data)} bytes")

    revision = data[0]
    sub_authority_count = data[1]
    expected_length = _SID_HEADER_LENGTH + 4 * sub_authority_count
    if len(data) != expected_length:
        raise InvalidEntityError(
            f"SID declares {sub_authority_count} sub-authorities "
            f"({expected_length} bytes) but has {len(data)} bytes"
        )

    authority = int.from_bytes(data[2:8], "big")
    sub_authorities = struct.unpack(
        f"<{sub_authority_count}I", bytes(data[_SID_HEADER_LENGTH:expected_length])
    )
    return "-".join(["S", str(revision), str(authority)] + [str(s) for s in sub_authorities])


def encode_sid(sid: str) -> bytes:
    """Convert a string SID back to its binary form (inverse of decode_sid).

    Raises:
        InvalidEntityError: If the string is not a well-formed SID.
    """
    parts = sid.split("-")
    if len(parts) < 3 or parts[0].upper() != "S":
        raise InvalidEntityError(f"Not a SID: {sid!r}")
    try:
        numbers = [int(part) for part in parts[1:]]
    except ValueError as e:
        raise InvalidEntityError(f"Not a SID: {sid!r}") from e

    revision, authority, sub_authorities = numbers[0], numbers[1], numbers[2:]
    if not 0 <= revision <= 0xFF:
        raise InvalidEntityError(f"SID revision out of range: {sid!r}")
    if not 0 <= authority < 1 << 48:
        raise InvalidEntityError(f"SID authority out of range: {sid!r}")
    if len(sub_authorities) > _MAX_SUB_AUTHORITIES or any(
        not 0 <= s <= 0xFFFFFFFF for s in sub_authorities
    ):
        raise InvalidEntityError(f"SID sub-authority out of range: {sid!r}")

    return (
        bytes([revision, len(sub_authorities)])
        + authority.to_bytes(6, "big")
        + struct.pack(f"<{len(sub_authorities)}I", *sub_authorities)
    )


def decode_guid(data: bytes) -> str:
    """Convert a binary objectGUID to its display form.

    Raises:
        InvalidEntityError: If the value is not exactly 16 bytes.
    """
    if not isinstance(data, (bytes, bytearray)) or len(data) != 16:
        length = len(data) if isinstance(data, (bytes, bytearray)) else type(data).__name__
        raise InvalidEntityError(f"GUID must be 16 bytes, got {length}")
    return str(uuid.UUID(bytes_le=bytes(data)))


# -------------------------------------------------------------------------
# Distinguished name helpers
# -------------------------------------------------------------------------


def common_name_from_dn(dn: str) -> str:
    r"""Extract the value of the first RDN of a distinguished name.

    Scans from the first "=" to the first unescaped ",". Escaped characters
    are unescaped, so "cn=a\,b,dc=com" gives "a,b".
    """
    chars: List[str] = []
    escaped = False
    for ch in dn[dn.find("=") + 1 :]:
        if escaped:
            chars.append(ch)
            escaped = False
        elif ch == "\\":
            escaped = True
        elif ch == ",":
            break
        else:
            chars.append(ch)
    return "".join(chars)


def parse_foreign_reference(dn: str) -> Optional[str]:
    """Return the SID embedded in a ForeignSecurityPrincipals DN, or None."""
    if not dn:
        return None
    match = _FOREIGN_PRINCIPAL_PATTERN.match(dn)
    return match.group(1) if match else None


# -------------------------------------------------------------------------
# Attribute access
# -------------------------------------------------------------------------


def _normalize_attributes(attributes: Mapping[str, Any]) -> Dict[str, Any]:
    """Lower-case attribute names and strip options like ";binary".

    When several names collapse to the same attribute (e.g. "member" and
    "member;range=0-1499"), an empty value never replaces a populated one.
    """
    normalized: Dict[str, Any] = {}
    for name, value in attributes.items():
        key = name.split(";")[0].lower()
        if key in normalized and not _values(value):
            continue
        normalized[key] = value
    return normalized


def _values(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple, set, frozenset)):
        return list(value)
    return [value]


def _single(value: Any) -> Any:
    values = _values(value)
    return values[0] if values else None


def _text(value: Any) -> Optional[str]:
    value = _single(value)
    if value is None:
        return None
    if isinstance(value, (bytes, bytearray)):
        try:
            return bytes(value).decode("utf-8")
        except UnicodeDecodeError as e:
            raise InvalidEntityError(f"Attribute value is not UTF-8: {value!r}") from e
    return str(value)


def _integer(attributes: Dict[str, Any], name: str, default: int = 0) -> int:
    raw = _text(attributes.get(name))
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise InvalidEntityError(f"{name} is not an integer: {raw!r}") from e


# -------------------------------------------------------------------------
# Entity
# -------------------------------------------------------------------------


@dataclass(eq=False)
class AdEntity:
    """One directory principal (user or group).

    Attributes:
        sid: Canonical string SID, unique within a catalog.
        dn: Distinguished name as returned by the directory.
        sam_account_name: Pre-Windows 2000 logon name.
        user_principal_name: UPN (users only).
        object_guid: Display form of objectGUID (informational).
        primary_group_sid: Domain SID + primaryGroupID (users only).
        user_account_control: userAccountControl bitmask.
        usn_changed: Change sequence number of the last modification.
        kind: Group or user.
        well_known: True only for synthetic entries not read from a directory.
        members: Raw member DNs, accumulated across ranged fetches.
    """

    sid: str
    dn: str
    sam_account_name: Optional[str] = None
    user_principal_name: Optional[str] = None
    object_guid: Optional[str] = None
    primary_group_sid: Optional[str] = None
    user_account_control: int = 0
    usn_changed: int = 0
    kind: PrincipalKind = PrincipalKind.GROUP
    well_known: bool = False
    members: Set[str] = field(default_factory=set, repr=False)

    @classmethod
    def from_attributes(cls, dn: str, attributes: Mapping[str, Any]) -> "AdEntity":
        """Build an entity from the attributes of a directory search result.

        Args:
            dn: Distinguished name of the entry.
            attributes: Attribute name -> value(s). Names are matched
                case-insensitively and options such as ";binary" are ignored.

        Raises:
            InvalidEntityError: If objectSid is missing or any binary or
                numeric attribute is malformed.
        """
        attrs = _normalize_attributes(attributes)

        raw_sid = _single(attrs.get("objectsid"))
        if raw_sid is None:
            raise InvalidEntityError(f"objectSid missing for {dn}")
        sid = decode_sid(raw_sid)

        raw_guid = _single(attrs.get("objectguid"))
        object_guid = decode_guid(raw_guid) if raw_guid is not None else None

        primary_group_id = _text(attrs.get("primarygroupid"))
        primary_group_sid = None
        if primary_group_id is not None:
            domain_sid = sid.rsplit("-", 1)[0]
            primary_group_sid = f"{domain_sid}-{primary_group_id}"

        object_classes = [_text(oc).lower() for oc in _values(attrs.get("objectclass"))]
        if object_classes:
            is_group = "group" in object_classes
        else:
            is_group = primary_group_id is None

        return cls(
            sid=sid,
            dn=dn,
            sam_account_name=_text(attrs.get("samaccountname")),
            user_principal_name=_text(attrs.get("userprincipalname")),
            object_guid=object_guid,
            primary_group_sid=primary_group_sid,
            user_account_control=_integer(attrs, "useraccountcontrol"),
            usn_changed=_integer(attrs, "usnchanged"),
            kind=PrincipalKind.GROUP if is_group else PrincipalKind.USER,
            members={_text(m) for m in _values(attrs.get("member"))},
        )

    @classmethod
    def well_known(cls, sid: str, dn: str) -> "AdEntity":
        """Build a synthetic group that does not exist in any directory."""
        return cls(
            sid=sid,
            dn=dn,
            sam_account_name=common_name_from_dn(dn),
            kind=PrincipalKind.GROUP,
            well_known=True,
        )

    @property
    def common_name(self) -> str:
        """Value of the first RDN of the DN."""
        return common_name_from_dn(self.dn)

    @property
    def is_group(self) -> bool:
        """Whether this entity is a group."""
        return self.kind == PrincipalKind.GROUP

    @property
    def is_disabled(self) -> bool:
        """Whether the account-disabled bit is set."""
        return bool(self.user_account_control & ADS_UF_ACCOUNTDISABLE)

    @property
    def is_builtin(self) -> bool:
        """Whether the SID belongs to the local BUILTIN domain."""
        return self.sid.startswith(BUILTIN_SID_PREFIX)

    def append_member_page(self, page: Iterable[str]) -> int:
        """Merge one page of a ranged member attribute.

        Returns:
            Number of members that were not already present.
        """
        before = len(self.members)
        self.members.update(page)
        return len(self.members) - before

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AdEntity):
            return NotImplemented
        return (
            self.sid == other.sid
            and self.dn.lower() == other.dn.lower()
            and self.primary_group_sid == other.primary_group_sid
            and self.is_disabled == other.is_disabled
        )

    def __hash__(self) -> int:
        return hash((self.sid, self.dn.lower()))
