"""Group catalog: the in-memory index of directory principals and memberships.

GroupCatalog is used for:
- Full reads of every security group and person from a directory source
- Incremental reads of entities changed since a USN watermark
- Resolving ForeignSecurityPrincipals placeholders to real entities
- Building the final group -> members definitions for the consumer

Indices are keyed by strings: SIDs for the identifier index, membership map,
domain labels and origins; lower-cased DNs for the DN index. The identifier
and DN indices always hold exactly the entities of the entity set.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Set

from pydantic import ValidationError

from adgroupsync.core.config import LocalizedNames
from adgroupsync.core.logging import ContextualLogger
from adgroupsync.core.logging import logger as default_logger
from adgroupsync.core.protocols import DirectoryServer
from adgroupsync.platform.access_control.entity import AdEntity, parse_foreign_reference
from adgroupsync.platform.access_control.schemas import (
    GroupDefinitions,
    Principal,
    PrincipalKind,
)

EVERYONE_SID = "S-1-1-0"
INTERACTIVE_SID = "S-1-5-4"
AUTHENTICATED_USERS_SID = "S-1-5-11"

# LDAP_MATCHING_RULE_BIT_AND = 1.2.840.113556.1.4.803
# and ADS_GROUP_TYPE_SECURITY_ENABLED = 2147483648.
ENTITY_FILTER = (
    "(|(&(objectClass=group)"
    "(groupType:1.2.840.113556.1.4.803:=2147483648))"
    "(&(objectClass=user)(objectCategory=person)))"
)

NON_MEMBER_ATTRIBUTES = (
    "uSNChanged",
    "sAMAccountName",
    "objectGUID",
    "objectSid",
    "userPrincipalName",
    "primaryGroupId",
    "userAccountControl",
)
ALL_ATTRIBUTES = NON_MEMBER_ATTRIBUTES + ("member",)


def changed_since_filter(previous_watermark: int) -> str:
    """Filter for security groups and people changed after a watermark."""
    return f"(&(uSNChanged>={previous_watermark + 1}){ENTITY_FILTER})"


@dataclass
class CatalogStats:
    """Data-quality counters for one catalog."""

    primary_group_misses: int = 0
    foreign_resolved: int = 0
    foreign_unresolved: int = 0
    members_skipped: int = 0
    groups_skipped: int = 0


class GroupCatalog:
    """All group information, organized in different ways.

    A fresh catalog holds only the three synthetic well-known groups
    (Everyone, Interactive, Authenticated Users). Ordinary users are added
    to Everyone only; Interactive and Authenticated Users contain Everyone,
    so their effective membership is inherited.

    Thread-safety: a catalog is not locked. Callers serialize all access
    (the sync coordinator holds its crawl lock around every use).
    """

    def __init__(
        self,
        localized: LocalizedNames,
        namespace: str,
        feed_builtin_groups: bool,
        logger: Optional[ContextualLogger] = None,
    ):
        """Initialize an empty catalog seeded with the well-known groups.

        Args:
            localized: Display names for well-known groups and domains.
            namespace: Namespace qualifying every principal.
            feed_builtin_groups: Whether BUILTIN groups keep their members.
            logger: Contextual logger; defaults to the package logger.
        """
        self.localized = localized
        self.namespace = namespace
        self.feed_builtin_groups = feed_builtin_groups
        self.logger = logger or default_logger

        self.entities: Set[AdEntity] = set()
        self.members: Dict[str, Set[str]] = {}  # group SID -> raw member DNs
        self.by_sid: Dict[str, AdEntity] = {}
        self.by_dn: Dict[str, AdEntity] = {}  # lower-cased DN -> entity
        self.domain: Dict[str, str] = {}  # SID -> domain label
        self.origin: Dict[str, str] = {}  # SID -> source host name
        self.stats = CatalogStats()

        self.everyone = AdEntity.well_known(EVERYONE_SID, f"CN={localized.everyone}")
        self.interactive = AdEntity.well_known(
            INTERACTIVE_SID, f"CN={localized.interactive},DC={localized.nt_authority}"
        )
        self.authenticated_users = AdEntity.well_known(
            AUTHENTICATED_USERS_SID,
            f"CN={localized.authenticated_users},DC={localized.nt_authority}",
        )
        self.well_known_membership: Dict[str, Set[str]] = {}
        self._seed_well_known()

    def _seed_well_known(self) -> None:
        self.well_known_membership = {
            EVERYONE_SID: set(),
            INTERACTIVE_SID: {self.everyone.dn},
            AUTHENTICATED_USERS_SID: {self.everyone.dn},
        }
        for entity in (self.everyone, self.interactive, self.authenticated_users):
            self._add_entity(entity)
        self.domain[INTERACTIVE_SID] = self.localized.nt_authority
        self.domain[AUTHENTICATED_USERS_SID] = self.localized.nt_authority

    @classmethod
    def from_state(
        cls,
        localized: LocalizedNames,
        namespace: str,
        feed_builtin_groups: bool,
        entities: Iterable[AdEntity],
        members: Mapping[str, Set[str]],
        by_sid: Mapping[str, AdEntity],
        by_dn: Mapping[str, AdEntity],
        domain: Mapping[str, str],
    ) -> "GroupCatalog":
        """Build a catalog whose entity set and indices are exactly the given ones.

        The well-known membership overlay is seeded as usual.
        """
        catalog = cls(localized, namespace, feed_builtin_groups)
        catalog.entities = set(entities)
        catalog.members = {sid: set(dns) for sid, dns in members.items()}
        catalog.by_sid = dict(by_sid)
        catalog.by_dn = {dn.lower(): entity for dn, entity in by_dn.items()}
        catalog.domain = dict(domain)
        catalog.origin = {}
        return catalog

    # -------------------------------------------------------------------------
    # Index maintenance
    # -------------------------------------------------------------------------

    def _add_entity(self, entity: AdEntity) -> None:
        """Insert an entity, evicting any entity holding the same SID or DN."""
        for holder in (self.by_sid.get(entity.sid), self.by_dn.get(entity.dn.lower())):
            if holder is not None and holder is not entity:
                self._evict(holder)
        self.entities.add(entity)
        self.by_sid[entity.sid] = entity
        self.by_dn[entity.dn.lower()] = entity

    def _evict(self, entity: AdEntity) -> None:
        """Remove an entity from every index, the membership map and Everyone."""
        self.entities.discard(entity)
        if self.by_sid.get(entity.sid) is entity:
            del self.by_sid[entity.sid]
            self.domain.pop(entity.sid, None)
            self.origin.pop(entity.sid, None)
            self.members.pop(entity.sid, None)
        if self.by_dn.get(entity.dn.lower()) is entity:
            del self.by_dn[entity.dn.lower()]
        self.well_known_membership[EVERYONE_SID].discard(entity.dn)

    def _purge_source(self, source: DirectoryServer) -> int:
        """Drop every entity read from the given source."""
        stale = [
            entity
            for entity in self.entities
            if not entity.well_known and self.origin.get(entity.sid) == source.host_name
        ]
        for entity in stale:
            self._evict(entity)
        return len(stale)

    # -------------------------------------------------------------------------
    # Reading from a directory
    # -------------------------------------------------------------------------

    async def read_everything(self, source: DirectoryServer, include_members: bool) -> None:
        """Read all security groups and people from a source.

        Args:
            source: Directory server to search.
            include_members: Whether the (large) member attribute is fetched.

        Raises:
            DirectoryConnectionError: If the search fails.
        """
        self.logger.debug(f"Starting full crawl of {source.host_name}")
        attributes = ALL_ATTRIBUTES if include_members else NON_MEMBER_ATTRIBUTES
        entities = await source.search(ENTITY_FILTER, False, list(attributes))
        # disabled groups handled later, in make_definitions()
        self.logger.debug("Ending full crawl - now starting processing")
        for entity in entities:
            self._add_entity(entity)
        self._process_entities(entities, source)

    async def read_updates(
        self,
        source: DirectoryServer,
        previous_identity: Optional[str],
        previous_epoch: Optional[str],
        previous_watermark: int,
    ) -> Set[AdEntity]:
        """Read only the groups/users updated since the previous crawl.

        If the source's identity (dsServiceName) or epoch (invocationID)
        changed, the cached state for that source is stale: it is dropped and
        a full crawl without members is done to re-establish it. Otherwise
        only entities with uSNChanged above the previous watermark are read.

        Returns:
            The new or modified entities; an empty set when nothing changed
            or when the cache had been stale.

        Raises:
            DirectoryConnectionError: If a search fails.
        """
        current_identity = source.identity()
        current_epoch = source.epoch()
        current_watermark = source.highest_watermark()

        if current_identity != previous_identity:
            # only warn when there was a previous identity to compare with
            if previous_identity is not None:
                self.logger.warning(
                    f"Directory Controller changed from {previous_identity} to "
                    f"{current_identity} -- performing full recrawl. Consider configuring "
                    f"the server by the FQDN of a single domain controller for partial "
                    f"updates support."
                )
            await self._refresh_stale_source(source)
            return set()

        if current_epoch != previous_epoch:
            self.logger.warning(
                f"Directory Controller {current_identity} has been restored from backup. "
                f"Performing full recrawl."
            )
            await self._refresh_stale_source(source)
            return set()

        if current_watermark == previous_watermark:
            self.logger.info(f"No updates on server {source.host_name} -- no crawl invoked.")
            return set()

        self.logger.info(
            f"Attempting incremental crawl of {source.host_name} "
            f"(USN {previous_watermark} -> {current_watermark})"
        )
        return await self.incremental_crawl(source, previous_watermark)

    async def _refresh_stale_source(self, source: DirectoryServer) -> None:
        purged = self._purge_source(source)
        self.logger.debug(f"Purged {purged} stale entities of {source.host_name}")
        await self.read_everything(source, include_members=False)

    async def incremental_crawl(
        self, source: DirectoryServer, previous_watermark: int
    ) -> Set[AdEntity]:
        """Search for entities changed after the watermark and apply them."""
        delta = await source.search(
            changed_since_filter(previous_watermark), False, list(ALL_ATTRIBUTES)
        )
        # disabled groups handled later, in make_definitions()
        self.incremental_apply(source, delta)
        return delta

    def incremental_apply(self, source: DirectoryServer, delta: Set[AdEntity]) -> None:
        """Replace stale versions of the changed entities and process only them.

        Cross-references (primary groups, member DNs) are still resolved
        against the whole catalog.
        """
        for entity in delta:
            old_entity = self.by_sid.get(entity.sid)
            if old_entity is not None:
                self._evict(old_entity)
        for entity in delta:
            self._add_entity(entity)
        self._process_entities(delta, source)
        self.logger.debug(f"Applied {len(delta)} changed entities from {source.host_name}")

    def _process_entities(self, entities: Set[AdEntity], source: DirectoryServer) -> None:
        self.logger.debug(f"Received {len(entities)} entities from {source.host_name}")
        label = source.domain_label()
        for entity in entities:
            self.domain[entity.sid] = self.localized.builtin if entity.is_builtin else label
            self.origin[entity.sid] = source.host_name
        self._initialize_members(entities)
        self._resolve_primary_groups(entities)
        self.logger.debug(f"Ending processing of {len(entities)} entities")

    def _initialize_members(self, entities: Iterable[AdEntity]) -> None:
        """Seed each group's member set from its raw member attribute."""
        for entity in entities:
            if entity.is_group:
                self.members[entity.sid] = set(entity.members)

    def _resolve_primary_groups(self, entities: Iterable[AdEntity]) -> None:
        """Add each user to its primary group and to Everyone."""
        added = 0
        missing = 0
        for user in entities:
            if user.is_group:
                continue
            primary_group = self.by_sid.get(user.primary_group_sid)
            if primary_group is None:
                missing += 1
                self.stats.primary_group_misses += 1
                self.logger.warning(
                    f"Group {user.primary_group_sid} -- primary group for user "
                    f"{user.dn} -- not found"
                )
                continue
            self.members.setdefault(primary_group.sid, set()).add(user.dn)
            self.well_known_membership[EVERYONE_SID].add(user.dn)
            added += 1
        self.logger.debug(f"# primary groups: {len(self.members)}")
        if missing:
            self.logger.debug(f"# missing primary groups: {missing}")
        self.logger.debug(f"# users added to all primary groups: {added}")

    # -------------------------------------------------------------------------
    # Resolution and definitions
    # -------------------------------------------------------------------------

    def resolve_foreign_references(self, scope: Iterable[AdEntity]) -> None:
        """Replace ForeignSecurityPrincipals member DNs with the real entity DNs.

        Members whose embedded SID is unknown are dropped. Each group's member
        set is resolved into a fresh set before being stored.
        """
        groups = 0
        passthrough = 0
        unresolved = 0
        resolved_count = 0
        for entity in scope:
            if not entity.is_group or entity.well_known:
                continue
            current = self.members.get(entity.sid)
            if current is None:
                continue
            groups += 1
            resolved_members: Set[str] = set()
            for member in list(current):
                sid = parse_foreign_reference(member)
                if sid is None:
                    resolved_members.add(member)
                    passthrough += 1
                    continue
                resolved = self.by_sid.get(sid)
                if resolved is None:
                    self.logger.info(
                        f"Unable to resolve foreign principal [{member}]; "
                        f"member of [{entity.dn}]"
                    )
                    unresolved += 1
                    self.stats.foreign_unresolved += 1
                else:
                    resolved_members.add(resolved.dn)
                    resolved_count += 1
                    self.stats.foreign_resolved += 1
            self.members[entity.sid] = resolved_members
        self.logger.debug(
            f"Foreign principals: groups={groups}, non-foreign={passthrough}, "
            f"unresolved={unresolved}, resolved={resolved_count}"
        )

    def principal_name(self, entity: AdEntity) -> str:
        """Return "sAMAccountName@domain", or the bare name when no domain is known."""
        name = entity.sam_account_name or ""
        label = self.domain.get(entity.sid)
        if name and label:
            return f"{name}@{label}"
        return name

    def make_definitions(self, scope: Iterable[AdEntity]) -> GroupDefinitions:
        """Build group -> members definitions for the groups in scope.

        BUILTIN groups (unless enabled) and disabled groups are reported with
        an empty member list. Members whose DN is unknown or whose name is
        invalid are skipped.
        """
        all_members: Dict[str, Set[str]] = {**self.members, **self.well_known_membership}
        definitions: GroupDefinitions = {}
        for entity in scope:
            if not entity.is_group or entity.sid not in all_members:
                continue

            group_name = self.principal_name(entity)
            try:
                group = Principal(
                    kind=PrincipalKind.GROUP, name=group_name, namespace=self.namespace
                )
            except ValidationError as e:
                self.stats.groups_skipped += 1
                self.logger.warning(f"Skipping over badly-named group {group_name!r}: {e}")
                continue

            if not self.feed_builtin_groups and entity.is_builtin:
                self.logger.debug(f"Sending empty BUILTIN group {group_name}")
                definitions[group] = []
                continue

            if entity.is_disabled:
                self.logger.debug(
                    f"Skipping {len(all_members[entity.sid])} members from "
                    f"disabled group {group_name}"
                )
                definitions[group] = []
                continue

            definitions[group] = self._member_principals(
                group_name, sorted(all_members[entity.sid])
            )
            if entity.well_known:
                self.logger.debug(
                    f"Well known group {group_name} with # members "
                    f"{len(definitions[group])}"
                )

        self.logger.debug(f"Number of groups defined: {len(definitions)}")
        if definitions:
            total = sum(len(members) for members in definitions.values())
            self.logger.debug(f"Mean size of defined group: {total / len(definitions):.1f}")
        return definitions

    def _member_principals(self, group_name: str, member_dns: List[str]) -> List[Principal]:
        principals: List[Principal] = []
        for member_dn in member_dns:
            member = self.by_dn.get(member_dn.lower())
            if member is None:
                self.stats.members_skipped += 1
                self.logger.info(f"Unknown member [{member_dn}] of group [{group_name}]")
                continue
            member_name = self.principal_name(member)
            try:
                principal = Principal(kind=member.kind, name=member_name, namespace=self.namespace)
            except ValidationError as e:
                self.stats.members_skipped += 1
                self.logger.warning(
                    f'Skipping badly-named {member.kind.value} "{member_name}" '
                    f'from group "{group_name}": {e}'
                )
                continue
            principals.append(principal)
        return principals

    # -------------------------------------------------------------------------
    # Combining and clearing
    # -------------------------------------------------------------------------

    def merge(self, other: "GroupCatalog") -> None:
        """Combine another catalog's entities, indices and memberships with this one."""
        for entity in other.entities:
            if entity.well_known:
                continue
            self._add_entity(entity)
        self.members.update({sid: set(dns) for sid, dns in other.members.items()})
        self.domain.update(other.domain)
        self.origin.update(other.origin)
        for sid, members in self.well_known_membership.items():
            members.update(other.well_known_membership.get(sid, ()))

    def clear_memberships(self) -> None:
        """Drop the raw membership map; indices are kept to detect later changes."""
        self.members.clear()

    def clear(self) -> None:
        """Reset to a freshly constructed catalog."""
        self.entities.clear()
        self.members.clear()
        self.by_sid.clear()
        self.by_dn.clear()
        self.domain.clear()
        self.origin.clear()
        self._seed_well_known()

    def log_summary(self) -> None:
        """Log sizes and data-quality counters."""
        self.logger.info(
            f"Catalog summary: entities={len(self.entities)}, "
            f"groups_with_members={len(self.members)}, "
            f"primary_group_misses={self.stats.primary_group_misses}, "
            f"foreign_resolved={self.stats.foreign_resolved}, "
            f"foreign_unresolved={self.stats.foreign_unresolved}, "
            f"members_skipped={self.stats.members_skipped}, "
            f"groups_skipped={self.stats.groups_skipped}"
        )
