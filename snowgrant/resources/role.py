from dataclasses import dataclass
from typing import ClassVar

from ..decoder import Column
from ..enums import GranteeType


@dataclass(frozen=True)
class Role:
    """
    An account role as returned by SHOW ROLES.

    Fields:
        name (string): The role name, case preserved.
        owner (string): The role that owns this role.
        comment (string): A comment about the role.
    """

    name: str = ""
    owner: str = ""
    comment: str = ""

    COLUMNS: ClassVar[tuple[Column, ...]] = (
        Column("name", "name"),
        Column("owner", "owner", optional=True),
        Column("comment", "comment", optional=True),
    )


@dataclass(frozen=True)
class RoleGrantee:
    """
    One row of SHOW GRANTS OF ROLE: a user or role the role is granted to.
    """

    role_name: str = ""
    grantee_type: str = ""
    grantee_name: str = ""

    COLUMNS: ClassVar[tuple[Column, ...]] = (
        Column("role_name", "role"),
        Column("grantee_type", "granted_to"),
        Column("grantee_name", "grantee_name"),
    )

    @property
    def is_user(self) -> bool:
        return self.grantee_type.upper() == GranteeType.USER.value

    @property
    def is_role(self) -> bool:
        return self.grantee_type.upper() == GranteeType.ROLE.value
