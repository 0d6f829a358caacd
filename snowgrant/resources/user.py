import datetime
from dataclasses import dataclass
from typing import ClassVar, Optional

from ..decoder import Column
from ..enums import AccountType, ColumnKind, UserStatus

SERVICE_USER_TYPES = ("SERVICE", "LEGACY_SERVICE")

# DESCRIBE USER does not return these, SHOW USERS does
DESCRIBE_SKIPPED_FIELDS = ("has_rsa_public_key", "has_password")


@dataclass(frozen=True)
class User:
    """
    A user as returned by SHOW USERS or pivoted from DESCRIBE USER.

    Fields:
        username (string): The user name (the identifier used in GRANT statements).
        login (string): The login name.
        display_name (string): Display name, may be empty.
        first_name, last_name, email (string): Profile attributes.
        disabled (bool): Whether the user is disabled.
        locked (bool): Whether Snowflake locked the user (SNOWFLAKE_LOCK).
        default_role (string): The user's default role.
        has_rsa_public_key, has_password (bool): Credential flags, SHOW USERS only.
        last_success_login (datetime): Last successful login, UTC.
        type (string): PERSON, SERVICE, LEGACY_SERVICE or empty.
        has_mfa (bool): Whether MFA is enrolled.
        comment (string): A comment about the user.
    """

    username: str = ""
    login: str = ""
    display_name: str = ""
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    disabled: bool = False
    locked: bool = False
    default_role: str = ""
    has_rsa_public_key: bool = False
    has_password: bool = False
    last_success_login: Optional[datetime.datetime] = None
    type: str = ""
    has_mfa: bool = False
    comment: str = ""

    COLUMNS: ClassVar[tuple[Column, ...]] = (
        Column("username", "name"),
        Column("login", "login_name"),
        Column("display_name", "display_name"),
        Column("first_name", "first_name"),
        Column("last_name", "last_name"),
        Column("email", "email"),
        Column("disabled", "disabled", ColumnKind.BOOL),
        Column("locked", "snowflake_lock", ColumnKind.BOOL),
        Column("default_role", "default_role"),
        Column("has_rsa_public_key", "has_rsa_public_key", ColumnKind.BOOL, optional=True),
        Column("has_password", "has_password", ColumnKind.BOOL, optional=True),
        Column("last_success_login", "last_success_login", ColumnKind.TIMESTAMP),
        Column("type", "type"),
        Column("has_mfa", "has_mfa", ColumnKind.BOOL),
        Column("comment", "comment"),
    )

    @property
    def resolved_display_name(self) -> str:
        if self.display_name:
            return self.display_name
        full_name = " ".join(part for part in (self.first_name, self.last_name) if part)
        return full_name or self.login

    @property
    def status(self) -> UserStatus:
        if self.disabled or self.locked:
            return UserStatus.DISABLED
        return UserStatus.ENABLED

    @property
    def status_details(self) -> str:
        if self.disabled:
            return "disabled"
        if self.locked:
            return "locked"
        return ""

    @property
    def account_type(self) -> AccountType:
        if self.type.upper() in SERVICE_USER_TYPES:
            return AccountType.SERVICE
        return AccountType.HUMAN
