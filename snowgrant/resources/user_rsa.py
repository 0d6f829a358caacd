import datetime
from dataclasses import dataclass
from typing import ClassVar, Optional

from ..decoder import Column


@dataclass(frozen=True)
class UserDescriptionProperty:
    name: str = ""
    value: str = ""

    COLUMNS: ClassVar[tuple[Column, ...]] = (
        Column("name", "property"),
        Column("value", "value"),
    )


@dataclass(frozen=True)
class UserRsa:
    """
    The key-pair state of a user: when each of the two RSA public key slots
    was last set. A slot that was never set is None.
    """

    username: str = ""
    rsa_public_key_last_set_time: Optional[datetime.datetime] = None
    rsa_public_key_2_last_set_time: Optional[datetime.datetime] = None

    def last_set_time(self, slot: int) -> Optional[datetime.datetime]:
        if slot == 1:
            return self.rsa_public_key_last_set_time
        if slot == 2:
            return self.rsa_public_key_2_last_set_time
        raise ValueError(f"invalid rsa key slot: {slot}")
