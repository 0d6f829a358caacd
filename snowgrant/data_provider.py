import logging
from typing import Optional

from .client import SnowflakeClient, StatementResponse, log_authorization_gap
from .context import CallContext
from .decoder import decode_describe, decode_rows, parse_snowflake_datetime
from .enums import ObjectKind
from .exceptions import (
    AmbiguousLookupError,
    NotFoundError,
    PermissionDeniedError,
    UnprocessableEntityError,
)
from .identifiers import escape_like_pattern, escape_single_quote, quote_identifier
from .resources import (
    Database,
    Role,
    RoleGrantee,
    Schema,
    Secret,
    Table,
    TableGrant,
    User,
    UserDescriptionProperty,
    UserRsa,
)
from .resources.user import DESCRIBE_SKIPPED_FIELDS

logger = logging.getLogger("snowgrant")

RSA_LAST_SET_TIME = "RSA_PUBLIC_KEY_LAST_SET_TIME"
RSA_2_LAST_SET_TIME = "RSA_PUBLIC_KEY_2_LAST_SET_TIME"


def _paged_show(show: str, limit: int, cursor: str = "") -> str:
    if cursor:
        return f"{show} LIMIT {limit} FROM '{escape_single_quote(cursor)}';"
    return f"{show} LIMIT {limit};"


def _fully_qualified(*parts: str) -> str:
    return ".".join(quote_identifier(part) for part in parts)


def _like_exact(name: str) -> str:
    return f"LIKE '{escape_like_pattern(name)}' ESCAPE '\\\\'"


def _single(records: list, label: str, name: str):
    """
    SHOW ... LIKE is case-insensitive, so keep only rows whose name matches exactly.
    """
    records = [record for record in records if record.name == name]
    if len(records) == 0:
        return None
    if len(records) > 1:
        raise AmbiguousLookupError(f"Found multiple {label}s matching {name}: {len(records)} rows")
    return records[0]


def _execute_last_handle(client: SnowflakeClient, ctx: CallContext, statement: str) -> StatementResponse:
    response = client.submit(ctx, statement)
    if len(response.statement_handles) > 1:
        return client.poll(ctx, response.statement_handles[-1])
    if response.has_result or not response.statement_handle:
        return response
    return client.poll(ctx, response.statement_handle)


# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------


def list_roles(client: SnowflakeClient, ctx: CallContext, cursor: str = "", limit: int = 50) -> list[Role]:
    response = client.execute(ctx, _paged_show("SHOW ROLES", limit, cursor))
    return decode_rows(response, Role)


def get_role(client: SnowflakeClient, ctx: CallContext, name: str) -> Optional[Role]:
    """
    Look up one account role by name. Returns None when no role matches.

    A 422 is not handled here: Snowflake answers that way for some system
    roles, and callers decide whether that means "skip" or "unresolvable".
    """
    response = client.execute(ctx, f"SHOW ROLES {_like_exact(name)};")
    return _single(decode_rows(response, Role), "role", name)


def list_role_grantees(
    client: SnowflakeClient,
    ctx: CallContext,
    role: str,
    offset: int = 0,
    limit: Optional[int] = None,
) -> list[RoleGrantee]:
    """
    List the users and roles a role is granted to.

    SHOW GRANTS OF ROLE has no server-side paging, so the full result is
    fetched and the window [offset, offset + limit) returned.
    """
    response = client.execute(ctx, f"SHOW GRANTS OF ROLE {quote_identifier(role)};")
    grantees = decode_rows(response, RoleGrantee)
    if limit is None:
        return grantees[offset:]
    return grantees[offset : offset + limit]


def grant_role(client: SnowflakeClient, ctx: CallContext, role: str, user: str):
    client.submit(ctx, f"GRANT ROLE {quote_identifier(role)} TO USER {quote_identifier(user)};")


def revoke_role(client: SnowflakeClient, ctx: CallContext, role: str, user: str):
    client.submit(ctx, f"REVOKE ROLE {quote_identifier(role)} FROM USER {quote_identifier(user)};")


# ---------------------------------------------------------------------------
# Databases and schemas
# ---------------------------------------------------------------------------


def list_databases(client: SnowflakeClient, ctx: CallContext, cursor: str = "", limit: int = 50) -> list[Database]:
    response = client.execute(ctx, _paged_show("SHOW DATABASES", limit, cursor))
    return decode_rows(response, Database)


def get_database(client: SnowflakeClient, ctx: CallContext, name: str) -> Optional[Database]:
    """
    Returns None when Snowflake answers 422, meaning the database exists but
    cannot be inspected with the current role.
    """
    try:
        response = client.execute(ctx, f"SHOW DATABASES {_like_exact(name)};")
    except UnprocessableEntityError as err:
        log_authorization_gap(err, "get_database", database=name)
        return None

    database = _single(decode_rows(response, Database), "database", name)
    if database is None:
        raise NotFoundError(f"database with name {name} not found")
    return database


def list_schemas_in_database(client: SnowflakeClient, ctx: CallContext, database: str) -> list[Schema]:
    response = client.execute(ctx, f"SHOW SCHEMAS IN DATABASE {quote_identifier(database)};")
    return decode_rows(response, Schema)


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


def list_users(client: SnowflakeClient, ctx: CallContext, cursor: str = "", limit: int = 50) -> list[User]:
    response = _execute_last_handle(client, ctx, _paged_show("SHOW USERS", limit, cursor))
    return decode_rows(response, User)


def _describe_user(client: SnowflakeClient, ctx: CallContext, name: str) -> StatementResponse:
    response = client.execute(ctx, f"DESCRIBE USER {quote_identifier(name)};")
    if not response.data:
        raise NotFoundError(f"user {name} not found")
    return response


def get_user(client: SnowflakeClient, ctx: CallContext, name: str) -> User:
    response = _describe_user(client, ctx, name)
    return decode_describe(response, User, skip=DESCRIBE_SKIPPED_FIELDS)


def describe_user_rsa(client: SnowflakeClient, ctx: CallContext, name: str) -> UserRsa:
    response = _describe_user(client, ctx, name)
    properties = {}
    for prop in decode_rows(response, UserDescriptionProperty):
        properties.setdefault(prop.name.upper(), prop.value)

    return UserRsa(
        username=properties.get("NAME", ""),
        rsa_public_key_last_set_time=parse_snowflake_datetime(properties.get(RSA_LAST_SET_TIME, "")),
        rsa_public_key_2_last_set_time=parse_snowflake_datetime(properties.get(RSA_2_LAST_SET_TIME, "")),
    )


# ---------------------------------------------------------------------------
# Tables
# ---------------------------------------------------------------------------


def list_tables_in_schema(
    client: SnowflakeClient,
    ctx: CallContext,
    database: str,
    schema: str,
    cursor: str = "",
    limit: int = 200,
) -> tuple[list[Table], str]:
    """
    List one page of tables in a schema. The next cursor is the last table
    name when the page is full, "" when the schema is exhausted.
    """
    show = f"SHOW TABLES IN SCHEMA {_fully_qualified(database, schema)}"
    try:
        response = client.execute(ctx, _paged_show(show, limit, cursor))
    except UnprocessableEntityError as err:
        logger.debug(f"Insufficient privileges for SHOW TABLES IN SCHEMA {database}.{schema}")
        raise PermissionDeniedError(
            f"insufficient privileges for SHOW TABLES IN SCHEMA {database}.{schema}: {err}", cause=err
        ) from err

    tables = decode_rows(response, Table)
    next_cursor = tables[-1].name if tables and len(tables) >= limit else ""
    return tables, next_cursor


def get_table(client: SnowflakeClient, ctx: CallContext, database: str, schema: str, name: str) -> Optional[Table]:
    statement = f"SHOW TABLES {_like_exact(name)} IN SCHEMA {_fully_qualified(database, schema)};"
    try:
        response = client.execute(ctx, statement)
    except UnprocessableEntityError as err:
        log_authorization_gap(err, "get_table", table=f"{database}.{schema}.{name}")
        return None

    for table in decode_rows(response, Table):
        if table.database_name == database and table.schema_name == schema and table.name == name:
            return table
    raise NotFoundError(f"table {database}.{schema}.{name} not found")


def list_table_grants(
    client: SnowflakeClient,
    ctx: CallContext,
    database: str,
    schema: str,
    table: str,
    object_kind: ObjectKind = ObjectKind.TABLE,
) -> list[TableGrant]:
    object_type = ObjectKind.VIEW if ObjectKind(object_kind) == ObjectKind.VIEW else ObjectKind.TABLE
    statement = f"SHOW GRANTS ON {object_type.value} {_fully_qualified(database, schema, table)};"
    try:
        response = client.execute(ctx, statement)
    except UnprocessableEntityError as err:
        table_ref = f"{database}.{schema}.{table}"
        log_authorization_gap(err, "list_table_grants", table=table_ref)
        raise PermissionDeniedError(
            f"insufficient privileges to show grants on table {table_ref}: {err.sf_message or err}", cause=err
        ) from err
    return decode_rows(response, TableGrant)


# ---------------------------------------------------------------------------
# Secrets
# ---------------------------------------------------------------------------


def list_secrets(client: SnowflakeClient, ctx: CallContext, database: str) -> list[Secret]:
    try:
        response = client.execute(ctx, f"SHOW SECRETS IN DATABASE {quote_identifier(database)};")
    except UnprocessableEntityError as err:
        log_authorization_gap(err, "list_secrets", expected_level=logging.WARNING, database=database)
        return []
    return decode_rows(response, Secret)
