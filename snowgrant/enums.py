from enum import Enum


class ParseableEnum(str, Enum):
    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str):
            for member in cls:
                if member.value == value.upper() or member.value == value.lower():
                    return member
        return None

    def __str__(self):
        return self.value


class ResourceType(ParseableEnum):
    USER = "user"
    ACCOUNT_ROLE = "account_role"
    DATABASE = "database"
    TABLE = "table"
    SECRET = "secret"
    RSA_PUBLIC_KEY = "rsa_public_key"


class GranteeType(ParseableEnum):
    ROLE = "ROLE"
    USER = "USER"


class ObjectKind(ParseableEnum):
    TABLE = "TABLE"
    VIEW = "VIEW"


class ColumnKind(ParseableEnum):
    STRING = "string"
    BOOL = "bool"
    TIMESTAMP = "timestamp"


class AccountType(ParseableEnum):
    HUMAN = "human"
    SERVICE = "service"


class UserStatus(ParseableEnum):
    ENABLED = "enabled"
    DISABLED = "disabled"


# Warehouse-declared row types (resultSetMetaData.rowType[].type)
ROW_TYPE_TEXT = "text"
ROW_TYPE_TIMESTAMP_LTZ = "timestamp_ltz"
ROW_TYPE_TIMESTAMP_NTZ = "timestamp_ntz"
ROW_TYPE_TIMESTAMP_TZ = "timestamp_tz"

# Entitlement slugs
OWNERSHIP = "ownership"
ASSIGNED = "assigned"
