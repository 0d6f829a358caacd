"""
Resource, entitlement and grant records in the shape the governance host
consumes. These carry no behavior beyond identity and serialization.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

from .enums import ResourceType


def entitlement_id(resource_type: str, resource_id: str, slug: str) -> str:
    return f"{resource_type}:{resource_id}:{slug}"


@dataclass(frozen=True)
class ResourceId:
    resource_type: str
    resource: str

    def __post_init__(self):
        # Store the plain string so ids built from enums and from tokens compare equal
        object.__setattr__(self, "resource_type", str(self.resource_type))

    def to_dict(self) -> dict:
        return {"resource_type": self.resource_type, "resource": self.resource}


@dataclass
class Resource:
    id: ResourceId
    display_name: str
    parent_id: Optional[ResourceId] = None
    profile: dict[str, Any] = field(default_factory=dict)
    traits: dict[str, Any] = field(default_factory=dict)
    child_resource_types: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        data = {
            "id": self.id.to_dict(),
            "display_name": self.display_name,
            "profile": self.profile,
            "traits": self.traits,
        }
        if self.parent_id:
            data["parent_id"] = self.parent_id.to_dict()
        if self.child_resource_types:
            data["child_resource_types"] = [str(t) for t in self.child_resource_types]
        return data


@dataclass(frozen=True)
class GrantExpandable:
    """
    Marks a grant made to a role so the host can expand it into the users and
    roles that hold that role.
    """

    entitlement_ids: tuple[str, ...]
    shallow: bool = True
    resource_type_ids: tuple[str, ...] = (str(ResourceType.ACCOUNT_ROLE), str(ResourceType.USER))

    @classmethod
    def for_role(cls, role_name: str) -> "GrantExpandable":
        return cls(entitlement_ids=(entitlement_id(ResourceType.ACCOUNT_ROLE, role_name, "assigned"),))

    def to_dict(self) -> dict:
        return {
            "entitlement_ids": list(self.entitlement_ids),
            "shallow": self.shallow,
            "resource_type_ids": list(self.resource_type_ids),
        }


@dataclass(frozen=True)
class Entitlement:
    resource_id: ResourceId
    slug: str
    display_name: str = field(default="", compare=False)
    description: str = field(default="", compare=False)
    grantable_to: tuple[str, ...] = field(default=(), compare=False)

    @property
    def id(self) -> str:
        return entitlement_id(self.resource_id.resource_type, self.resource_id.resource, self.slug)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "resource_id": self.resource_id.to_dict(),
            "slug": self.slug,
            "display_name": self.display_name,
            "description": self.description,
            "grantable_to": [str(t) for t in self.grantable_to],
        }


@dataclass(frozen=True)
class Grant:
    entitlement: Entitlement
    principal: ResourceId
    annotations: tuple[GrantExpandable, ...] = ()

    @property
    def id(self) -> str:
        return f"{self.entitlement.id}:{self.principal.resource_type}:{self.principal.resource}"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entitlement": self.entitlement.id,
            "principal": self.principal.to_dict(),
            "annotations": [a.to_dict() for a in self.annotations],
        }
