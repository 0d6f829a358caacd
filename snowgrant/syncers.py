import datetime
import logging
import secrets
import string
from dataclasses import dataclass, field
from typing import Any, List, Optional, Tuple, Union

from . import data_provider
from .client import CreateUserRequest, SnowflakeClient
from .context import CallContext
from .enums import ResourceType
from .exceptions import InvalidArgumentError, SnowgrantError, UnprocessableEntityError, wrap_error
from .grants import GrantResolver, assigned_entitlement, owner_entitlement
from .host import Entitlement, Grant, Resource, ResourceId
from .identifiers import quote_identifier
from .pagination import TablePager, decode_flat_token, next_flat_token
from .resources import Database, Role, Secret, Table, User, UserRsa

logger = logging.getLogger("snowgrant")

DEFAULT_PAGE_SIZE = 50
DEFAULT_TABLE_PAGE_SIZE = 200

FETCH_USER_MAX_RETRIES = 5
FETCH_USER_BASE_DELAY = 0.5

RSA_KEY_SLOTS = (1, 2)
TABLE_CREATED_ON_FORMAT = "%Y-%m-%d %H:%M:%S.%f"

# Profile keys copied onto a create-user request when present
_CREATE_USER_PROFILE_FIELDS = {
    "login": "login_name",
    "display_name": "display_name",
    "first_name": "first_name",
    "last_name": "last_name",
    "email": "email",
    "comment": "comment",
    "default_warehouse": "default_warehouse",
    "default_namespace": "default_namespace",
    "default_role": "default_role",
    "default_secondary_roles": "default_secondary_roles",
}


def _isoformat(value: Optional[datetime.datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _resource_id(value: Union[Resource, ResourceId]) -> ResourceId:
    return value.id if isinstance(value, Resource) else value


# ---------------------------------------------------------------------------
# Resource builders
# ---------------------------------------------------------------------------


def user_resource(user: User, sync_secrets: bool = False) -> Resource:
    traits = {
        "login": user.login,
        "mfa_enabled": user.has_mfa,
        "account_type": str(user.account_type),
        "status": str(user.status),
        "status_details": user.status_details,
    }
    if user.email:
        traits["email"] = user.email
    if user.last_success_login:
        traits["last_login"] = _isoformat(user.last_success_login)

    return Resource(
        id=ResourceId(ResourceType.USER, user.username),
        display_name=user.resolved_display_name,
        profile={
            "email": user.email,
            "login": user.login,
            "display_name": user.display_name,
            "first_name": user.first_name,
            "last_name": user.last_name,
            "comment": user.comment,
        },
        traits=traits,
        child_resource_types=[ResourceType.RSA_PUBLIC_KEY] if sync_secrets else [],
    )


def role_resource(role: Role) -> Resource:
    return Resource(
        id=ResourceId(ResourceType.ACCOUNT_ROLE, role.name),
        display_name=role.name,
        profile={"name": role.name},
    )


def database_resource(database: Database, sync_secrets: bool = False) -> Resource:
    children = [ResourceType.TABLE]
    if sync_secrets:
        children.append(ResourceType.SECRET)
    return Resource(
        id=ResourceId(ResourceType.DATABASE, database.name),
        display_name=database.name,
        profile={"name": database.name, "owner": database.owner, "kind": database.kind},
        child_resource_types=children,
    )


def table_resource(table: Table, parent_id: Optional[ResourceId], shared: bool) -> Resource:
    created_on = table.created_on.strftime(TABLE_CREATED_ON_FORMAT)[:-3] if table.created_on else ""
    return Resource(
        id=ResourceId(ResourceType.TABLE, table.id),
        display_name=table.name,
        parent_id=parent_id,
        profile={
            "name": table.name,
            "schema_name": table.schema_name,
            "database_name": table.database_name,
            "kind": table.kind,
            "comment": table.comment,
            "owner": table.owner,
            "created_on": created_on,
            "database_is_shared_system": shared,
        },
    )


def secret_resource(secret: Secret, parent_id: ResourceId) -> Resource:
    return Resource(
        id=ResourceId(ResourceType.SECRET, secret.id),
        display_name=secret.name,
        parent_id=parent_id,
        traits={
            "created_at": _isoformat(secret.created_on),
            "created_by": ResourceId(ResourceType.USER, secret.owner).to_dict(),
        },
    )


def rsa_resource(user_rsa: UserRsa, slot: int, parent_id: ResourceId) -> Optional[Resource]:
    last_set = user_rsa.last_set_time(slot)
    if last_set is None:
        return None
    username = user_rsa.username or parent_id.resource
    rsa_id = f"{username}-rsa_{slot}"
    return Resource(
        id=ResourceId(ResourceType.RSA_PUBLIC_KEY, rsa_id),
        display_name=rsa_id,
        parent_id=parent_id,
        traits={"last_used_at": _isoformat(last_set), "created_by": parent_id.to_dict()},
    )


# ---------------------------------------------------------------------------
# Syncers
# ---------------------------------------------------------------------------


class ResourceSyncer:
    resource_type: ResourceType

    def __init__(self, client: SnowflakeClient):
        self.client = client

    def list(self, ctx: CallContext, parent_id: Optional[ResourceId] = None, token: str = ""):
        raise NotImplementedError

    def entitlements(self, ctx: CallContext, resource: Resource) -> List[Entitlement]:
        return []

    def grants(self, ctx: CallContext, resource: Resource, token: str = "") -> Tuple[List[Grant], str]:
        return [], ""

    def _require_parent(self, parent_id: Optional[ResourceId], parent_type: ResourceType) -> Optional[str]:
        if parent_id is None:
            return None
        if parent_id.resource_type != str(parent_type):
            raise wrap_error(
                InvalidArgumentError(f"invalid parent resource type: {parent_id.resource_type}"),
                "invalid parent resource type",
            )
        return parent_id.resource


@dataclass
class CredentialOptions:
    random_password: bool = False
    password_length: int = 16
    plaintext_password: Optional[str] = None
    force_change_at_next_login: bool = False


@dataclass
class CreateAccountResult:
    resource: Resource
    plaintext: dict[str, str] = field(default_factory=dict)


def generate_password(length: int = 16) -> str:
    if length < 8:
        raise InvalidArgumentError(f"password length must be at least 8, got {length}")
    alphabet = string.ascii_letters + string.digits + "!@#$%^&*-_=+"
    # Snowflake requires upper, lower and a digit
    while True:
        password = "".join(secrets.choice(alphabet) for _ in range(length))
        if (
            any(c.islower() for c in password)
            and any(c.isupper() for c in password)
            and any(c.isdigit() for c in password)
        ):
            return password


class UserSyncer(ResourceSyncer):
    resource_type = ResourceType.USER

    def __init__(
        self,
        client: SnowflakeClient,
        page_size: int = DEFAULT_PAGE_SIZE,
        sync_secrets: bool = False,
        retry_base_delay: float = FETCH_USER_BASE_DELAY,
    ):
        super().__init__(client)
        self.page_size = page_size
        self.sync_secrets = sync_secrets
        self.retry_base_delay = retry_base_delay

    def list(self, ctx: CallContext, parent_id: Optional[ResourceId] = None, token: str = ""):
        try:
            cursor = decode_flat_token(token)
            users = data_provider.list_users(self.client, ctx, cursor, self.page_size)
        except SnowgrantError as err:
            raise wrap_error(err, "failed to list users") from err

        resources = [user_resource(user, self.sync_secrets) for user in users]
        return resources, next_flat_token(users, self.page_size, key=lambda u: u.username)

    def fetch_user_with_retry(self, ctx: CallContext, name: str) -> User:
        """
        Fetch a user right after creation. DESCRIBE USER can answer 422 until
        the new user has propagated, so 422s are retried with exponential
        backoff; anything else is raised immediately.
        """
        attempt = 0
        while True:
            try:
                user = data_provider.get_user(self.client, ctx, name)
            except UnprocessableEntityError:
                if attempt >= FETCH_USER_MAX_RETRIES:
                    raise
                delay = self.retry_base_delay * (2**attempt)
                attempt += 1
                logger.debug(
                    f"user fetch returned 422, retrying name={name} attempt={attempt} "
                    f"max_retries={FETCH_USER_MAX_RETRIES} delay={delay:.2f}s"
                )
                ctx.sleep(delay)
                continue
            logger.debug(f"user fetched successfully name={name}")
            return user

    def _create_user_request(self, name: str, profile: dict[str, Any]) -> CreateUserRequest:
        request = CreateUserRequest(name=quote_identifier(name))
        for key, attr in _CREATE_USER_PROFILE_FIELDS.items():
            value = profile.get(key)
            if isinstance(value, str) and value:
                setattr(request, attr, value)
        if isinstance(profile.get("disabled"), bool):
            request.disabled = profile["disabled"]
        return request

    def create_account(
        self,
        ctx: CallContext,
        profile: dict[str, Any],
        credential_options: Optional[CredentialOptions] = None,
    ) -> CreateAccountResult:
        name = profile.get("name")
        if not isinstance(name, str) or not name:
            raise InvalidArgumentError("user name is required (provide via profile.name)")

        request = self._create_user_request(name, profile)
        plaintext = {}
        if credential_options is not None:
            request.must_change_password = credential_options.force_change_at_next_login
            if credential_options.plaintext_password:
                password = credential_options.plaintext_password
            elif credential_options.random_password:
                password = generate_password(credential_options.password_length)
            else:
                raise InvalidArgumentError("unsupported credential option")
            request.password = password
            plaintext["password"] = password

        try:
            self.client.create_user(ctx, request)
        except SnowgrantError as err:
            logger.error(f"failed to create user name={name}: {err}")
            raise wrap_error(err, "failed to create user") from err

        try:
            user = self.fetch_user_with_retry(ctx, name)
        except SnowgrantError as err:
            logger.error(f"failed to fetch user after creation name={name}: {err}")
            raise wrap_error(err, "failed to fetch user after creation") from err

        logger.debug(f"user created successfully name={user.username}")
        return CreateAccountResult(resource=user_resource(user, self.sync_secrets), plaintext=plaintext)

    def delete(self, ctx: CallContext, resource_id: ResourceId):
        if not resource_id.resource:
            raise InvalidArgumentError("user name is required")
        try:
            self.client.delete_user(ctx, quote_identifier(resource_id.resource), if_exists=True)
        except SnowgrantError as err:
            raise wrap_error(err, "failed to delete user") from err


class AccountRoleSyncer(ResourceSyncer):
    resource_type = ResourceType.ACCOUNT_ROLE

    def __init__(self, client: SnowflakeClient, page_size: int = DEFAULT_PAGE_SIZE):
        super().__init__(client)
        self.page_size = page_size
        self.resolver = GrantResolver(client)

    def list(self, ctx: CallContext, parent_id: Optional[ResourceId] = None, token: str = ""):
        try:
            cursor = decode_flat_token(token)
            roles = data_provider.list_roles(self.client, ctx, cursor, self.page_size)
        except SnowgrantError as err:
            raise wrap_error(err, "failed to list account roles") from err
        return [role_resource(role) for role in roles], next_flat_token(roles, self.page_size, key=lambda r: r.name)

    def entitlements(self, ctx: CallContext, resource: Resource) -> List[Entitlement]:
        return [
            assigned_entitlement(resource, ResourceType.USER),
            assigned_entitlement(resource, ResourceType.ACCOUNT_ROLE),
        ]

    def grants(self, ctx: CallContext, resource: Resource, token: str = "") -> Tuple[List[Grant], str]:
        try:
            return self.resolver.role_grants(ctx, resource, token, self.page_size)
        except SnowgrantError as err:
            raise wrap_error(err, "failed to list account role grantees") from err

    def _require_user(self, principal: ResourceId, message: str):
        if principal.resource_type != str(ResourceType.USER):
            logger.warning(f"{message} principal_type={principal.resource_type} principal_id={principal.resource}")
            raise InvalidArgumentError(f"snowflake-connector: {message}")

    def grant(self, ctx: CallContext, principal: Union[Resource, ResourceId], entitlement: Entitlement):
        principal_id = _resource_id(principal)
        self._require_user(principal_id, "account roles can only be granted to users")
        role = entitlement.resource_id.resource
        try:
            data_provider.grant_role(self.client, ctx, role, principal_id.resource)
        except SnowgrantError as err:
            logger.error(f"failed to grant account role account_role={role} user={principal_id.resource}")
            raise wrap_error(err, "failed to grant account role") from err

    def revoke(self, ctx: CallContext, grant: Grant):
        self._require_user(grant.principal, "only users can be revoked from account roles")
        role = grant.entitlement.resource_id.resource
        try:
            data_provider.revoke_role(self.client, ctx, role, grant.principal.resource)
        except SnowgrantError as err:
            logger.error(f"failed to revoke account role account_role={role} user={grant.principal.resource}")
            raise wrap_error(err, "failed to revoke account role") from err


class DatabaseSyncer(ResourceSyncer):
    resource_type = ResourceType.DATABASE

    def __init__(self, client: SnowflakeClient, page_size: int = DEFAULT_PAGE_SIZE, sync_secrets: bool = False):
        super().__init__(client)
        self.page_size = page_size
        self.sync_secrets = sync_secrets
        self.resolver = GrantResolver(client)

    def list(self, ctx: CallContext, parent_id: Optional[ResourceId] = None, token: str = ""):
        try:
            cursor = decode_flat_token(token)
            databases = data_provider.list_databases(self.client, ctx, cursor, self.page_size)
        except SnowgrantError as err:
            raise wrap_error(err, "failed to list databases") from err
        resources = [database_resource(db, self.sync_secrets) for db in databases]
        return resources, next_flat_token(databases, self.page_size, key=lambda d: d.name)

    def entitlements(self, ctx: CallContext, resource: Resource) -> List[Entitlement]:
        return [owner_entitlement(resource)]

    def grants(self, ctx: CallContext, resource: Resource, token: str = "") -> Tuple[List[Grant], str]:
        try:
            return self.resolver.database_grants(ctx, resource), ""
        except SnowgrantError as err:
            raise wrap_error(err, "failed to get database owner grants") from err


class TableSyncer(ResourceSyncer):
    resource_type = ResourceType.TABLE

    def __init__(self, client: SnowflakeClient, page_size: int = DEFAULT_TABLE_PAGE_SIZE):
        super().__init__(client)
        self.page_size = page_size
        self.pager = TablePager(client)
        self.resolver = GrantResolver(client)

    def _database_shared(self, ctx: CallContext, database: str) -> bool:
        db = data_provider.get_database(self.client, ctx, database)
        return db is None or db.is_shared_or_system

    def list(self, ctx: CallContext, parent_id: Optional[ResourceId] = None, token: str = ""):
        database = self._require_parent(parent_id, ResourceType.DATABASE)
        if database is None:
            return [], ""
        try:
            # The flag is computed once and then travels in the page token
            shared = self._database_shared(ctx, database) if not token else False
            page = self.pager.page(ctx, database, token, self.page_size, shared=shared)
        except SnowgrantError as err:
            raise wrap_error(err, "failed to list tables in database") from err

        resources = [table_resource(table, parent_id, page.shared) for table in page.tables]
        return resources, page.next_token

    def entitlements(self, ctx: CallContext, resource: Resource) -> List[Entitlement]:
        try:
            return self.resolver.table_entitlements(ctx, resource)
        except SnowgrantError as err:
            raise wrap_error(err, f"failed to list table entitlements for {resource.id.resource}") from err

    def grants(self, ctx: CallContext, resource: Resource, token: str = "") -> Tuple[List[Grant], str]:
        try:
            return self.resolver.table_grants(ctx, resource), ""
        except SnowgrantError as err:
            raise wrap_error(err, f"failed to list table grants for {resource.id.resource}") from err


class SecretSyncer(ResourceSyncer):
    resource_type = ResourceType.SECRET

    def list(self, ctx: CallContext, parent_id: Optional[ResourceId] = None, token: str = ""):
        database = self._require_parent(parent_id, ResourceType.DATABASE)
        if database is None:
            return [], ""
        try:
            secrets_ = data_provider.list_secrets(self.client, ctx, database)
        except SnowgrantError as err:
            raise wrap_error(err, "failed to list secrets") from err
        return [secret_resource(secret, parent_id) for secret in secrets_], ""


class RsaPublicKeySyncer(ResourceSyncer):
    resource_type = ResourceType.RSA_PUBLIC_KEY

    def list(self, ctx: CallContext, parent_id: Optional[ResourceId] = None, token: str = ""):
        username = self._require_parent(parent_id, ResourceType.USER)
        if username is None:
            return [], ""
        try:
            user_rsa = data_provider.describe_user_rsa(self.client, ctx, username)
        except UnprocessableEntityError as err:
            logger.warning(f"describe_user_rsa failed username={username}: {err}")
            return [], ""
        except SnowgrantError as err:
            raise wrap_error(err, "failed to describe user keys") from err

        resources = []
        for slot in RSA_KEY_SLOTS:
            resource = rsa_resource(user_rsa, slot, parent_id)
            if resource is not None:
                resources.append(resource)
        return resources, ""
