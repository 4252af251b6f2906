"""
Policy values.

A PolicySpec is what callers register: an overlay in which every unset
field is inherited from the parent policy. A PolicyDescriptor is the
resolved, immutable result stored in the registry.
"""
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, FrozenSet, Iterable, Mapping, Optional, Tuple

from warden.features.principals.schemas import Principal
from warden.features.resources.schemas import ResourceSchema
from warden.features.scopes.filters import Filter, Nothing


class Verb(str, Enum):
    LIST = "list"
    SHOW = "show"
    CREATE = "create"
    UPDATE = "update"
    DESTROY = "destroy"


class SurfaceAction(str, Enum):
    """The three attribute surfaces: fields returned, accepted on create, accepted on update."""
    READ = "read"
    CREATE = "create"
    UPDATE = "update"


# Verbs without a target record; any other verb is record-level
COLLECTION_VERBS: FrozenSet[str] = frozenset({Verb.LIST.value, Verb.CREATE.value})

SURFACE_FOR_VERB = {
    Verb.LIST.value: SurfaceAction.READ,
    Verb.SHOW.value: SurfaceAction.READ,
    Verb.CREATE.value: SurfaceAction.CREATE,
    Verb.UPDATE.value: SurfaceAction.UPDATE,
    Verb.DESTROY.value: SurfaceAction.READ,
}

VIEWER_CAPABILITIES: FrozenSet[str] = frozenset({Verb.LIST.value, Verb.SHOW.value})
ADMIN_CAPABILITIES: FrozenSet[str] = frozenset(v.value for v in Verb)

ScopeFn = Callable[[Optional[Principal], ResourceSchema], Filter]
ConditionFn = Callable[[Optional[Principal], Any], bool]

PolicyKey = Tuple[str, Optional[str]]


def verb_name(verb) -> str:
    if isinstance(verb, Enum):
        return str(verb.value)
    return str(verb).lower()


def surface_for(action) -> SurfaceAction:
    """Map a verb or surface name to its attribute surface; custom verbs read."""
    if isinstance(action, SurfaceAction):
        return action
    name = verb_name(action)
    if name in SURFACE_FOR_VERB:
        return SURFACE_FOR_VERB[name]
    try:
        return SurfaceAction(name)
    except ValueError:
        return SurfaceAction.READ


@dataclass(frozen=True)
class AttributeRule:
    """Per-action attribute override: an allow-list or a deny-list, never both."""
    allow: Optional[FrozenSet[str]] = None
    deny: Optional[FrozenSet[str]] = None

    def __post_init__(self):
        if self.allow is not None:
            object.__setattr__(self, "allow", frozenset(self.allow))
        if self.deny is not None:
            object.__setattr__(self, "deny", frozenset(self.deny))

    @property
    def names(self) -> FrozenSet[str]:
        return (self.allow or frozenset()) | (self.deny or frozenset())


@dataclass(frozen=True)
class PolicySpec:
    """
    Registration overlay.

    Fields left as None are inherited from the parent. `conditions` and
    `attributes` are merged per key: a spec redefining the `update`
    condition keeps the parent's `destroy` condition.
    """
    parent: Optional[str] = None
    capabilities: Optional[Iterable] = None
    scope: Optional[ScopeFn] = None
    conditions: Optional[Mapping[str, ConditionFn]] = None
    attributes: Optional[Mapping[str, AttributeRule]] = None

    @classmethod
    def viewer(cls, scope: Optional[ScopeFn] = None, **kwargs) -> "PolicySpec":
        return cls(capabilities=VIEWER_CAPABILITIES, scope=scope, **kwargs)

    @classmethod
    def admin(cls, scope: Optional[ScopeFn] = None, **kwargs) -> "PolicySpec":
        return cls(capabilities=ADMIN_CAPABILITIES, scope=scope, **kwargs)


def _deny_scope(principal, schema) -> Filter:
    return Nothing()


@dataclass(frozen=True)
class PolicyDescriptor:
    role: Optional[str]
    resource_type: Optional[str]
    capabilities: FrozenSet[str]
    scope: ScopeFn
    conditions: Mapping[str, ConditionFn] = field(default_factory=lambda: MappingProxyType({}))
    attribute_rules: Mapping[SurfaceAction, AttributeRule] = field(default_factory=lambda: MappingProxyType({}))
    parent: Optional[PolicyKey] = None
    # Registry key this descriptor was resolved from; None for the deny-all fallback
    matched: Optional[PolicyKey] = None

    @property
    def is_deny_all(self) -> bool:
        return self.matched is None

    def permits(self, verb) -> bool:
        return verb_name(verb) in self.capabilities

    def rule_for(self, action) -> Optional[AttributeRule]:
        return self.attribute_rules.get(surface_for(action))


def deny_all(role: Optional[str], resource_type: Optional[str]) -> PolicyDescriptor:
    """The fail-closed policy: no capabilities, empty scope."""
    return PolicyDescriptor(
        role=role,
        resource_type=resource_type,
        capabilities=frozenset(),
        scope=_deny_scope,
    )
