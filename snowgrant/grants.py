"""
Grant resolution for tables, databases and account roles.

Table grants go through these steps:

    shared check --shared--> owner grant from the recorded owner, no SHOW GRANTS
        |
        +--> SHOW GRANTS ON TABLE|VIEW --> resolve grantees --> owner fallback

A 422 anywhere in this flow narrows the result instead of failing it. Nothing
here retries.
"""

import logging
from typing import Any, Optional

from . import data_provider
from .client import SnowflakeClient, log_authorization_gap
from .context import CallContext
from .enums import ASSIGNED, OWNERSHIP, GranteeType, ObjectKind, ResourceType
from .exceptions import (
    AmbiguousLookupError,
    DecodeError,
    NotFoundError,
    PermissionDeniedError,
    SnowflakeAPIError,
    UnprocessableEntityError,
)
from .host import Entitlement, Grant, GrantExpandable, Resource, ResourceId
from .identifiers import parse_table_id
from .pagination import next_offset_token, parse_offset_token
from .resources.database import SYSTEM_OWNER

logger = logging.getLogger("snowgrant")

SHARED_PROFILE_FIELD = "database_is_shared_system"


def owner_entitlement(resource: Resource) -> Entitlement:
    return Entitlement(
        resource_id=resource.id,
        slug=OWNERSHIP,
        display_name=f"Is owner of {resource.display_name}",
        description=f"Is owned by {resource.display_name}",
        grantable_to=(ResourceType.USER,),
    )


def privilege_entitlement(resource: Resource, privilege: str) -> Entitlement:
    privilege = privilege.lower()
    return Entitlement(
        resource_id=resource.id,
        slug=privilege,
        display_name=f"{privilege.upper()} on {resource.display_name}",
        description=f"Has {privilege} privilege on {resource.display_name}",
        grantable_to=(ResourceType.USER, ResourceType.ACCOUNT_ROLE),
    )


def assigned_entitlement(resource: Resource, grantable_to: ResourceType) -> Entitlement:
    return Entitlement(
        resource_id=resource.id,
        slug=ASSIGNED,
        display_name=f"{resource.display_name} account role {ASSIGNED}",
        description=f"Has {resource.display_name} account role assigned",
        grantable_to=(grantable_to,),
    )


def role_principal(role_name: str) -> ResourceId:
    return ResourceId(ResourceType.ACCOUNT_ROLE, role_name)


def _role_grant(entitlement: Entitlement, role_name: str) -> Grant:
    return Grant(entitlement, role_principal(role_name), (GrantExpandable.for_role(role_name),))


def _profile_bool(value: Any) -> Optional[bool]:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.lower() in ("true", "1")
    return None


def _object_kind(resource: Resource) -> ObjectKind:
    kind = str(resource.profile.get("kind") or "")
    if kind.strip().upper() == ObjectKind.VIEW.value:
        return ObjectKind.VIEW
    return ObjectKind.TABLE


def _is_system_owner(owner: str) -> bool:
    return owner.upper() == SYSTEM_OWNER


class _GrantSet:
    """Ordered grants, at most one per entitlement and principal."""

    def __init__(self):
        self.grants: list[Grant] = []
        self._seen: set[tuple[str, str, str]] = set()

    def add(self, grant: Grant) -> bool:
        key = (grant.entitlement.id, str(grant.principal.resource_type), grant.principal.resource)
        if key in self._seen:
            return False
        self._seen.add(key)
        self.grants.append(grant)
        return True


class GrantResolver:
    def __init__(self, client: SnowflakeClient):
        self.client = client

    # -----------------------------------------------------------------------
    # Tables
    # -----------------------------------------------------------------------

    def is_database_shared(self, ctx: CallContext, table_resource: Resource, database: str) -> bool:
        flag = _profile_bool(table_resource.profile.get(SHARED_PROFILE_FIELD))
        if flag is not None:
            return flag
        db = data_provider.get_database(self.client, ctx, database)
        if db is None:
            # 422: the database cannot be inspected, treat it as shared
            return True
        return db.is_shared_or_system

    def table_entitlements(self, ctx: CallContext, table_resource: Resource) -> list[Entitlement]:
        database, schema, name = parse_table_id(table_resource.id.resource)
        owner = owner_entitlement(table_resource)
        if self.is_database_shared(ctx, table_resource, database):
            return [owner]

        try:
            table_grants = data_provider.list_table_grants(
                self.client, ctx, database, schema, name, _object_kind(table_resource)
            )
        except PermissionDeniedError:
            return [owner]

        privileges = set()
        for tg in table_grants:
            if tg.granted_to.upper() in (GranteeType.ROLE.value, GranteeType.USER.value):
                privileges.add(tg.privilege.lower())
        privileges.discard(OWNERSHIP)

        entitlements = [privilege_entitlement(table_resource, p) for p in sorted(privileges)]
        entitlements.append(owner)
        return entitlements

    def table_grants(self, ctx: CallContext, table_resource: Resource) -> list[Grant]:
        database, schema, name = parse_table_id(table_resource.id.resource)
        owner_ent = owner_entitlement(table_resource)

        if self.is_database_shared(ctx, table_resource, database):
            recorded_owner = str(table_resource.profile.get("owner") or "")
            if recorded_owner and not _is_system_owner(recorded_owner):
                return [_role_grant(owner_ent, recorded_owner)]
            return []

        try:
            table_grants = data_provider.list_table_grants(
                self.client, ctx, database, schema, name, _object_kind(table_resource)
            )
        except PermissionDeniedError:
            logger.debug(f"falling back to owner-only grants for {table_resource.id.resource}")
            table_grants = []

        result = _GrantSet()
        owner_found = False
        for tg in table_grants:
            slug = tg.privilege.lower()
            entitlement = owner_ent if slug == OWNERSHIP else privilege_entitlement(table_resource, slug)
            grant = self._resolve_table_grantee(ctx, entitlement, tg.granted_to, tg.grantee_name)
            if grant is None:
                continue
            result.add(grant)
            if slug == OWNERSHIP:
                owner_found = True

        if not owner_found:
            fallback = self._owner_fallback(ctx, table_resource, owner_ent, database, schema, name)
            if fallback is not None:
                result.add(fallback)

        return result.grants

    def _resolve_table_grantee(
        self, ctx: CallContext, entitlement: Entitlement, granted_to: str, grantee_name: str
    ) -> Optional[Grant]:
        granted_to = granted_to.upper()
        if granted_to == GranteeType.ROLE.value:
            try:
                role = data_provider.get_role(self.client, ctx, grantee_name)
            except UnprocessableEntityError as err:
                # System roles cannot be shown but still hold the grant
                log_authorization_gap(err, "get_role", role=grantee_name)
                return _role_grant(entitlement, grantee_name)
            if role is None:
                logger.debug(f"role {grantee_name} not found, skipping grant {entitlement.id}")
                return None
            return _role_grant(entitlement, grantee_name)

        if granted_to == GranteeType.USER.value:
            try:
                user = data_provider.get_user(self.client, ctx, grantee_name)
            except (SnowflakeAPIError, NotFoundError, DecodeError, AmbiguousLookupError) as err:
                logger.warning(f"skipping grant {entitlement.id} to user {grantee_name}: {err}")
                return None
            return Grant(entitlement, ResourceId(ResourceType.USER, user.username or grantee_name))

        return None

    def _owner_fallback(
        self,
        ctx: CallContext,
        table_resource: Resource,
        owner_ent: Entitlement,
        database: str,
        schema: str,
        name: str,
    ) -> Optional[Grant]:
        try:
            table = data_provider.get_table(self.client, ctx, database, schema, name)
        except NotFoundError as err:
            logger.warning(f"owner fallback for {table_resource.id.resource}: {err}")
            return None
        if table is not None:
            owner = table.owner
        else:
            owner = str(table_resource.profile.get("owner") or "")

        if not owner or _is_system_owner(owner):
            return None
        try:
            role = data_provider.get_role(self.client, ctx, owner)
        except UnprocessableEntityError:
            return None
        if role is None:
            return None
        return _role_grant(owner_ent, owner)

    # -----------------------------------------------------------------------
    # Databases
    # -----------------------------------------------------------------------

    def database_grants(self, ctx: CallContext, database_resource: Resource) -> list[Grant]:
        database = data_provider.get_database(self.client, ctx, database_resource.id.resource)
        if database is None or not database.owner:
            return []

        try:
            owner = data_provider.get_role(self.client, ctx, database.owner)
        except UnprocessableEntityError as err:
            log_authorization_gap(err, "get_role", role=database.owner)
            return []
        if owner is None:
            logger.warning(f"snowflake-connector: account role not found role={database.owner}")
            return []
        return [_role_grant(owner_entitlement(database_resource), database.owner)]

    # -----------------------------------------------------------------------
    # Account roles
    # -----------------------------------------------------------------------

    def role_grants(self, ctx: CallContext, role_resource: Resource, token: str = "", page_size: int = 50):
        offset = parse_offset_token(token)
        role_name = role_resource.id.resource
        try:
            grantees = data_provider.list_role_grantees(self.client, ctx, role_name, offset, page_size)
        except UnprocessableEntityError as err:
            log_authorization_gap(err, "list_role_grantees", role=role_name)
            return [], ""

        grants = []
        for grantee in grantees:
            if grantee.is_user:
                principal = ResourceId(ResourceType.USER, grantee.grantee_name)
                entitlement = assigned_entitlement(role_resource, ResourceType.USER)
            elif grantee.is_role:
                principal = role_principal(grantee.grantee_name)
                entitlement = assigned_entitlement(role_resource, ResourceType.ACCOUNT_ROLE)
            else:
                continue
            grants.append(Grant(entitlement, principal))

        return grants, next_offset_token(len(grantees), page_size, offset)
