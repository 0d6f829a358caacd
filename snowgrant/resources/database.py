from dataclasses import dataclass
from typing import ClassVar

from ..decoder import Column

SYSTEM_OWNER = "SNOWFLAKE"
SHARED_DATABASE_KINDS = ("SHARED", "APPLICATION", "IMPORTED DATABASE")


@dataclass(frozen=True)
class Database:
    """
    A database as returned by SHOW DATABASES.

    Fields:
        name (string): The database name.
        owner (string): The owning role. Empty for imported databases.
        kind (string): STANDARD, SHARED, APPLICATION, IMPORTED DATABASE...
        origin (string): "<account>.<share>" for databases created from a share.
    """

    name: str = ""
    owner: str = ""
    kind: str = ""
    origin: str = ""

    COLUMNS: ClassVar[tuple[Column, ...]] = (
        Column("name", "name"),
        Column("owner", "owner"),
        Column("kind", "kind"),
        Column("origin", "origin"),
    )

    @property
    def is_shared_or_system(self) -> bool:
        # SHOW GRANTS on objects inside these databases answers 422
        if self.origin:
            return True
        if not self.owner or self.owner.upper() == SYSTEM_OWNER:
            return True
        return self.kind.strip().upper() in SHARED_DATABASE_KINDS
