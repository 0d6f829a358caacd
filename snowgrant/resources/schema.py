from dataclasses import dataclass
from typing import ClassVar

from ..decoder import Column

INFORMATION_SCHEMA = "INFORMATION_SCHEMA"


@dataclass(frozen=True)
class Schema:
    name: str = ""
    database_name: str = ""

    COLUMNS: ClassVar[tuple[Column, ...]] = (
        Column("name", "name"),
        Column("database_name", "database_name"),
    )

    @property
    def is_information_schema(self) -> bool:
        return self.name.upper() == INFORMATION_SCHEMA
