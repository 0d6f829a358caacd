from .database import Database
from .role import Role, RoleGrantee
from .schema import Schema
from .secret import Secret
from .table import Table, TableGrant
from .user import User
from .user_rsa import UserDescriptionProperty, UserRsa

__all__ = [
    "Database",
    "Role",
    "RoleGrantee",
    "Schema",
    "Secret",
    "Table",
    "TableGrant",
    "User",
    "UserDescriptionProperty",
    "UserRsa",
]
