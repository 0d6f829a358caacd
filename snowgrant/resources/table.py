import datetime
from dataclasses import dataclass
from typing import ClassVar, Optional

from ..decoder import Column
from ..enums import ColumnKind, ObjectKind
from ..identifiers import table_id


@dataclass(frozen=True)
class Table:
    """
    A table or view as returned by SHOW TABLES / SHOW VIEWS.

    Fields:
        created_on (datetime): Creation time, UTC.
        name (string): The table name.
        schema_name (string): The containing schema.
        database_name (string): The containing database.
        kind (string): TABLE, TRANSIENT, TEMPORARY or VIEW.
        comment (string): A comment about the table.
        owner (string): The owning role.
    """

    created_on: Optional[datetime.datetime] = None
    name: str = ""
    schema_name: str = ""
    database_name: str = ""
    kind: str = ""
    comment: str = ""
    owner: str = ""

    COLUMNS: ClassVar[tuple[Column, ...]] = (
        Column("created_on", "created_on", ColumnKind.TIMESTAMP),
        Column("name", "name"),
        Column("schema_name", "schema_name"),
        Column("database_name", "database_name"),
        Column("kind", "kind"),
        Column("comment", "comment"),
        Column("owner", "owner"),
    )

    @property
    def id(self) -> str:
        return table_id(self.database_name, self.schema_name, self.name)

    @property
    def object_kind(self) -> ObjectKind:
        if self.kind.strip().upper() == ObjectKind.VIEW.value:
            return ObjectKind.VIEW
        return ObjectKind.TABLE


@dataclass(frozen=True)
class TableGrant:
    """
    One row of SHOW GRANTS ON TABLE|VIEW.
    """

    created_on: Optional[datetime.datetime] = None
    privilege: str = ""
    granted_on: str = ""
    name: str = ""
    granted_to: str = ""
    grantee_name: str = ""
    grant_option: str = ""
    granted_by: str = ""

    COLUMNS: ClassVar[tuple[Column, ...]] = (
        Column("created_on", "created_on", ColumnKind.TIMESTAMP),
        Column("privilege", "privilege"),
        Column("granted_on", "granted_on"),
        Column("name", "name"),
        Column("granted_to", "granted_to"),
        Column("grantee_name", "grantee_name"),
        Column("grant_option", "grant_option"),
        Column("granted_by", "granted_by"),
    )
