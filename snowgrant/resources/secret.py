import datetime
from dataclasses import dataclass
from typing import ClassVar, Optional

from ..decoder import Column
from ..enums import ColumnKind


@dataclass(frozen=True)
class Secret:
    created_on: Optional[datetime.datetime] = None
    name: str = ""
    schema_name: str = ""
    database_name: str = ""
    owner: str = ""
    comment: str = ""
    secret_type: str = ""

    COLUMNS: ClassVar[tuple[Column, ...]] = (
        Column("created_on", "created_on", ColumnKind.TIMESTAMP),
        Column("name", "name"),
        Column("schema_name", "schema_name"),
        Column("database_name", "database_name"),
        Column("owner", "owner"),
        Column("comment", "comment", optional=True),
        Column("secret_type", "secret_type", optional=True),
    )

    @property
    def id(self) -> str:
        return f"{self.database_name}-{self.name}"
