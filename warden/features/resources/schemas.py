"""
Resource schemas: declared attributes, visibility flags and owner references.

Schemas are defined when a resource type is registered and never change
at runtime. The catalog holding them is frozen before requests are served.
"""
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple
from pydantic import BaseModel, ConfigDict, Field

from warden.core.errors import ConfigurationError


class AttributeSpec(BaseModel):
    """
    A single declared attribute.

    `hidden` attributes are on the permanent denylist: no policy can expose
    them. `immutable` attributes are accepted on create but never on update.
    """
    name: str = Field(..., min_length=1)
    type: str = "string"
    readable: bool = True
    creatable: bool = True
    updatable: bool = True
    hidden: bool = False
    immutable: bool = False

    model_config = ConfigDict(frozen=True)


class OwnerReference(BaseModel):
    """A parent reference: `attribute` on this resource points at `resource_type`."""
    attribute: str
    resource_type: str

    model_config = ConfigDict(frozen=True)


class ResourceSchema(BaseModel):
    """
    Declared shape of a resource type.

    Owner references are co-equal; `primary_owner` names the one attribute
    that drives scoping and display.
    """
    name: str = Field(..., min_length=1)
    attributes: Tuple[AttributeSpec, ...] = ()
    owners: Tuple[OwnerReference, ...] = ()
    primary_owner: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @property
    def attribute_names(self) -> Tuple[str, ...]:
        return tuple(attribute.name for attribute in self.attributes)

    @property
    def hidden(self) -> frozenset:
        return frozenset(a.name for a in self.attributes if a.hidden)

    def attribute(self, name: str) -> AttributeSpec:
        for attribute in self.attributes:
            if attribute.name == name:
                return attribute
        raise KeyError(name)

    def primary_owner_reference(self) -> Optional[OwnerReference]:
        for owner in self.owners:
            if owner.attribute == self.primary_owner:
                return owner
        return None

    @property
    def secondary_owners(self) -> Tuple[OwnerReference, ...]:
        return tuple(o for o in self.owners if o.attribute != self.primary_owner)


class ResourceCatalog:
    """Immutable mapping of resource type name to schema."""

    def __init__(self, schemas: Mapping[str, ResourceSchema]):
        self._schemas = MappingProxyType(dict(schemas))

    def __contains__(self, resource_type: str) -> bool:
        return resource_type in self._schemas

    def __iter__(self):
        return iter(self._schemas)

    def get(self, resource_type: str) -> ResourceSchema:
        try:
            return self._schemas[resource_type]
        except KeyError:
            raise ConfigurationError(f"Unknown resource type: {resource_type}")


class CatalogBuilder:
    """Collects resource schemas at model-registration time."""

    def __init__(self):
        self._schemas: Dict[str, ResourceSchema] = {}

    def add(self, schema: ResourceSchema) -> "CatalogBuilder":
        if schema.name in self._schemas:
            raise ConfigurationError(f"Resource type {schema.name!r} registered twice")

        names: List[str] = list(schema.attribute_names)
        duplicates = {name for name in names if names.count(name) > 1}
        if duplicates:
            raise ConfigurationError(
                f"Resource {schema.name!r} declares duplicate attributes: {sorted(duplicates)}"
            )

        for owner in schema.owners:
            if owner.attribute not in names:
                raise ConfigurationError(
                    f"Owner reference {owner.attribute!r} is not an attribute of {schema.name!r}"
                )

        if schema.owners and schema.primary_owner is None:
            raise ConfigurationError(f"Resource {schema.name!r} has owners but no primary owner")
        if schema.primary_owner is not None and schema.primary_owner_reference() is None:
            raise ConfigurationError(
                f"Primary owner {schema.primary_owner!r} of {schema.name!r} is not an owner reference"
            )

        self._schemas[schema.name] = schema
        return self

    def build(self) -> ResourceCatalog:
        return ResourceCatalog(self._schemas)


class AttributeContract(BaseModel):
    name: str
    type: str
    readable: bool
    creatable: bool
    updatable: bool


class ResourceContract(BaseModel):
    """Per-role API contract consumed by schema-serialization layers."""
    resource_type: str
    role: str
    attributes: List[AttributeContract] = []
    actions: List[str] = []
