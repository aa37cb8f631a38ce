"""Active Directory server over LDAP (ldap3).

Implements the DirectoryServer protocol for one domain controller:
- Binds with a simple bind over LDAP or LDAPS, retrying socket failures
- Reads rootDSE state used for incremental crawls (dsServiceName,
  highestCommittedUSN) and the NTDS settings invocationID
- Looks up the NetBIOS domain name in the Partitions container
- Runs paged searches and completes ranged member attributes
  (member;range=0-1499) with follow-up base searches
"""

import asyncio
import re
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

from ldap3 import BASE, NONE, SIMPLE, SUBTREE, Connection, Server
from ldap3.core.exceptions import LDAPException, LDAPSocketOpenError
from ldap3.utils.conv import escape_filter_chars
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from adgroupsync.core.config import TransportMethod
from adgroupsync.core.exceptions import DirectoryConnectionError, InvalidEntityError
from adgroupsync.core.logging import ContextualLogger
from adgroupsync.core.logging import logger as default_logger
from adgroupsync.platform.access_control.entity import AdEntity, decode_guid

# LDAP control OID for showing deleted/tombstone objects
LDAP_SERVER_SHOW_DELETED_OID = "1.2.840.113556.1.4.417"

ROOT_DSE_ATTRIBUTES = [
    "dsServiceName",
    "highestCommittedUSN",
    "defaultNamingContext",
    "configurationNamingContext",
]

_MEMBER_RANGE_PATTERN = re.compile(r"^member;range=(\d+)-(\d+|\*)$", re.IGNORECASE)

# Missing attributes must stay absent: with empty attributes on, ldap3 drops
# "member" from ranged replies and fails when it was never requested.
CONNECTION_OPTIONS = {"auto_range": False, "return_empty_attributes": False}


def _first_text(raw_attributes: Dict[str, Any], name: str) -> Optional[str]:
    """First value of an attribute from an ldap3 raw_attributes dict, as text."""
    for key, values in raw_attributes.items():
        if key.split(";")[0].lower() != name.lower():
            continue
        if not values:
            return None
        value = values[0] if isinstance(values, list) else values
        return value.decode("utf-8") if isinstance(value, bytes) else str(value)
    return None


def _usn(value: Optional[str]) -> int:
    if not value:
        return 0
    try:
        return int(value)
    except ValueError as e:
        raise InvalidEntityError(f"highestCommittedUSN is not an integer: {value!r}") from e


def _member_range(raw_attributes: Dict[str, Any]) -> Optional[Tuple[str, int, Optional[int]]]:
    """Find a ranged member attribute; returns (key, start, end or None for '*')."""
    for key in raw_attributes:
        match = _MEMBER_RANGE_PATTERN.match(key)
        if match:
            end = None if match.group(2) == "*" else int(match.group(2))
            return key, int(match.group(1)), end
    return None


class LdapDirectoryServer:
    """DirectoryServer backed by an ldap3 connection.

    Args:
        host: Domain controller host name or address.
        port: LDAP port (389, or 636 for LDAPS).
        method: Plain LDAP or LDAPS.
        user: Bind user (DOMAIN\\user, user@domain or a DN).
        password: Bind password.
        read_timeout_secs: Socket receive timeout for every operation.
        logger: Contextual logger; defaults to the package logger.
    """

    PAGE_SIZE = 1000
    MAX_RETRIES = 3

    def __init__(
        self,
        host: str,
        port: int,
        method: TransportMethod,
        user: str,
        password: str,
        read_timeout_secs: int = 90,
        logger: Optional[ContextualLogger] = None,
    ):
        """Initialize the server; no connection is made until refresh()."""
        self.host = host
        self.port = port
        self.method = method
        self.user = user
        self.password = password
        self.read_timeout_secs = read_timeout_secs
        self.logger = (logger or default_logger).with_context(source=host)

        self._connection: Optional[Connection] = None
        self._ds_service_name: Optional[str] = None
        self._invocation_id: Optional[str] = None
        self._highest_committed_usn = 0
        self._default_naming_context = ""
        self._netbios_name = ""

    @property
    def host_name(self) -> str:
        """Configured host name."""
        return self.host

    def __repr__(self) -> str:
        return f"LdapDirectoryServer({self.host}:{self.port}, {self.method.value})"

    # -------------------------------------------------------------------------
    # Connection
    # -------------------------------------------------------------------------

    @retry(
        retry=retry_if_exception_type(LDAPSocketOpenError),
        stop=stop_after_attempt(MAX_RETRIES),
        wait=wait_exponential(multiplier=1, max=10),
        reraise=True,
    )
    def _connect(self) -> Connection:
        server = Server(
            self.host,
            port=self.port,
            use_ssl=self.method == TransportMethod.SSL,
            get_info=NONE,
            connect_timeout=self.read_timeout_secs,
        )
        conn = Connection(
            server,
            user=self.user,
            password=self.password,
            authentication=SIMPLE,
            auto_bind=True,
            receive_timeout=self.read_timeout_secs,
            **CONNECTION_OPTIONS,
        )
        self.logger.info(f"Connected to {self.host}:{self.port} as {self.user}")
        return conn

    def _ensure_connection(self) -> Connection:
        if self._connection is None or not self._connection.bound:
            self._connection = self._connect()
        return self._connection

    def close(self) -> None:
        """Unbind and forget the connection."""
        if self._connection is not None:
            try:
                self._connection.unbind()
            except LDAPException as e:
                self.logger.debug(f"Ignoring error while unbinding: {e}")
            self._connection = None

    # -------------------------------------------------------------------------
    # Server state
    # -------------------------------------------------------------------------

    async def refresh(self) -> None:
        """Reconnect if needed and re-read the server's identity, epoch and USN."""
        await asyncio.to_thread(self._run_guarded, "refresh", self._refresh_sync)

    def _run_guarded(self, operation_name: str, operation, *args):
        """Run an LDAP operation, translating ldap3 failures.

        The connection is dropped on failure so the next call reconnects.
        KeyError covers ldap3 response post-processing of unexpected replies.
        """
        try:
            return operation(*args)
        except (LDAPException, InvalidEntityError, KeyError) as e:
            self._connection = None
            raise DirectoryConnectionError(self.host, f"LDAP {operation_name} failed: {e}") from e

    def _refresh_sync(self) -> None:
        conn = self._ensure_connection()

        root = self._base_entry(conn, "", ROOT_DSE_ATTRIBUTES)
        self._ds_service_name = _first_text(root, "dsServiceName")
        self._highest_committed_usn = _usn(_first_text(root, "highestCommittedUSN"))
        self._default_naming_context = _first_text(root, "defaultNamingContext") or ""
        configuration_nc = _first_text(root, "configurationNamingContext") or ""

        self._invocation_id = None
        if self._ds_service_name:
            ntds = self._base_entry(conn, self._ds_service_name, ["invocationID"])
            raw_invocation = next(
                (v[0] for k, v in ntds.items() if k.lower() == "invocationid" and v), None
            )
            if raw_invocation is not None:
                self._invocation_id = decode_guid(raw_invocation)

        self._netbios_name = self._lookup_netbios_name(conn, configuration_nc)
        self.logger.debug(
            f"Server state: service={self._ds_service_name}, "
            f"invocation={self._invocation_id}, usn={self._highest_committed_usn}, "
            f"netbios={self._netbios_name}"
        )

    def _base_entry(self, conn: Connection, dn: str, attributes: List[str]) -> Dict[str, Any]:
        conn.search(
            search_base=dn,
            search_filter="(objectClass=*)",
            search_scope=BASE,
            attributes=attributes,
        )
        for item in conn.response or []:
            if item.get("type") == "searchResEntry":
                return item.get("raw_attributes", {})
        return {}

    def _lookup_netbios_name(self, conn: Connection, configuration_nc: str) -> str:
        if not configuration_nc or not self._default_naming_context:
            return ""
        conn.search(
            search_base=f"CN=Partitions,{configuration_nc}",
            search_filter=(
                f"(&(objectClass=crossRef)"
                f"(nCName={escape_filter_chars(self._default_naming_context)}))"
            ),
            search_scope=SUBTREE,
            attributes=["nETBIOSName"],
        )
        for item in conn.response or []:
            if item.get("type") == "searchResEntry":
                return _first_text(item.get("raw_attributes", {}), "nETBIOSName") or ""
        self.logger.warning(f"No NetBIOS name found for {self._default_naming_context}")
        return ""

    def identity(self) -> Optional[str]:
        """dsServiceName read by the last refresh."""
        return self._ds_service_name

    def epoch(self) -> Optional[str]:
        """invocationID read by the last refresh."""
        return self._invocation_id

    def highest_watermark(self) -> int:
        """highestCommittedUSN read by the last refresh."""
        return self._highest_committed_usn

    def domain_label(self) -> str:
        """NetBIOS domain name read by the last refresh."""
        return self._netbios_name

    # -------------------------------------------------------------------------
    # Search
    # -------------------------------------------------------------------------

    async def search(
        self, search_filter: str, include_deleted: bool, attributes: Sequence[str]
    ) -> Set[AdEntity]:
        """Paged subtree search under the default naming context."""
        return await asyncio.to_thread(
            self._run_guarded,
            "search",
            self._search_sync,
            search_filter,
            include_deleted,
            list(attributes),
        )

    def _search_sync(
        self, search_filter: str, include_deleted: bool, attributes: List[str]
    ) -> Set[AdEntity]:
        conn = self._ensure_connection()
        controls = [(LDAP_SERVER_SHOW_DELETED_OID, True, None)] if include_deleted else None

        entities: Set[AdEntity] = set()
        skipped = 0
        for item in conn.extend.standard.paged_search(
            search_base=self._default_naming_context,
            search_filter=search_filter,
            search_scope=SUBTREE,
            attributes=attributes,
            paged_size=self.PAGE_SIZE,
            controls=controls,
            generator=True,
        ):
            if item.get("type") != "searchResEntry":
                continue
            dn = item["dn"]
            raw_attributes = item.get("raw_attributes", {})
            try:
                entity = AdEntity.from_attributes(dn, raw_attributes)
            except InvalidEntityError as e:
                skipped += 1
                self.logger.warning(f"Skipping unreadable entry {dn}: {e.message}")
                continue
            ranged = _member_range(raw_attributes)
            if ranged is not None and ranged[2] is not None:
                self._fetch_remaining_members(conn, entity, ranged[2] + 1)
            entities.add(entity)

        self.logger.debug(f"Search returned {len(entities)} entities ({skipped} skipped)")
        return entities

    def _fetch_remaining_members(self, conn: Connection, entity: AdEntity, start: int) -> None:
        """Read member;range=start-* pages until the server reports the last one."""
        total_added = 0
        while True:
            page = self._base_entry(conn, entity.dn, [f"member;range={start}-*"])
            ranged = _member_range(page)
            if ranged is None:
                break
            key, _, end = ranged
            values = [v.decode("utf-8") if isinstance(v, bytes) else str(v) for v in page[key]]
            total_added += entity.append_member_page(values)
            if end is None:
                break
            start = end + 1
        self.logger.debug(f"Fetched {total_added} more members of {entity.dn}")
