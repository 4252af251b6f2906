"""
Policy registration and resolution.

Policies are keyed by (role, resource_type). A key with resource_type None
is the role-level default. Resolution tries, in order:

1. the exact (role, resource_type) policy
2. the role-level default (role, None)
3. the fail-closed deny-all policy

Registration happens once at startup through PolicyRegistryBuilder; the
built PolicyRegistry is immutable and safe to share across requests.
"""
from dataclasses import replace
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple

from warden.core.errors import ConfigurationError
from warden.features.policies.schemas import (
    COLLECTION_VERBS,
    AttributeRule,
    PolicyDescriptor,
    PolicyKey,
    PolicySpec,
    SurfaceAction,
    deny_all,
    verb_name,
)
from warden.features.principals.schemas import Principal, roles_of
from warden.features.resources.schemas import ResourceCatalog
from warden.utils import get_logger


log = get_logger(__name__)


class PolicyRegistry:
    """Immutable (role, resource_type) -> PolicyDescriptor mapping."""

    def __init__(
        self,
        catalog: ResourceCatalog,
        policies: Dict[PolicyKey, PolicyDescriptor],
        collection_verbs: FrozenSet[str] = COLLECTION_VERBS,
    ):
        self.catalog = catalog
        self.collection_verbs = frozenset(collection_verbs)
        self._policies = MappingProxyType(dict(policies))

    @property
    def keys(self) -> Tuple[PolicyKey, ...]:
        return tuple(self._policies)

    @property
    def roles(self) -> FrozenSet[str]:
        return frozenset(role for role, _ in self._policies)

    def is_collection_verb(self, verb) -> bool:
        return verb_name(verb) in self.collection_verbs

    def fallback_chain(self, role: Optional[str], resource_type: str) -> List[PolicyKey]:
        """Keys consulted by resolve(), in order."""
        return [(role, resource_type), (role, None)]

    def resolve(self, role: Optional[str], resource_type: str) -> PolicyDescriptor:
        if resource_type not in self.catalog:
            log.warning(f"Policy lookup for unknown resource type {resource_type!r}, denying")
            return deny_all(role, resource_type)
        for key in self.fallback_chain(role, resource_type):
            policy = self._policies.get(key)
            if policy is not None:
                if policy.resource_type != resource_type:
                    policy = replace(policy, resource_type=resource_type)
                return policy
        log.debug(f"No policy for role={role} resource={resource_type}, denying")
        return deny_all(role, resource_type)

    def resolve_principal(
        self,
        principal: Optional[Principal],
        resource_type: str,
    ) -> Tuple[PolicyDescriptor, ...]:
        """
        One resolved policy per role, sorted by role name.

        A principal without roles resolves to a single deny-all policy.
        Anonymous callers (None) resolve through the anonymous role.
        """
        roles = sorted(roles_of(principal))
        if not roles:
            return (deny_all(None, resource_type),)
        return tuple(self.resolve(role, resource_type) for role in roles)

    def capabilities_for(self, principal: Optional[Principal], resource_type: str) -> FrozenSet[str]:
        """Union of the capability sets of every role held."""
        capabilities: FrozenSet[str] = frozenset()
        for policy in self.resolve_principal(principal, resource_type):
            capabilities |= policy.capabilities
        return capabilities


class PolicyRegistryBuilder:
    """
    Collects policy registrations and validates each one as it arrives.

    Parents must be registered before their children, so that every
    registration can be fully resolved and checked on the spot.
    """

    def __init__(self, catalog: ResourceCatalog, collection_verbs: Iterable[str] = COLLECTION_VERBS):
        self.catalog = catalog
        self.collection_verbs = frozenset(verb_name(v) for v in collection_verbs)
        self._policies: Dict[PolicyKey, PolicyDescriptor] = {}

    def _parent_for(self, role: str, resource_type: Optional[str], spec: PolicySpec) -> Optional[PolicyDescriptor]:
        if spec.parent is not None:
            parent = self._policies.get((spec.parent, None))
            if parent is None:
                raise ConfigurationError(
                    f"Policy ({role}, {resource_type}) names parent {spec.parent!r}, "
                    f"which has no role-level policy registered"
                )
            return parent
        if resource_type is not None:
            return self._policies.get((role, None))
        return None

    def _merge_rules(
        self,
        role: str,
        resource_type: Optional[str],
        parent: Optional[PolicyDescriptor],
        spec: PolicySpec,
    ) -> Dict[SurfaceAction, AttributeRule]:
        rules: Dict[SurfaceAction, AttributeRule] = dict(parent.attribute_rules) if parent else {}
        for action, rule in (spec.attributes or {}).items():
            try:
                surface = SurfaceAction(verb_name(action))
            except ValueError:
                raise ConfigurationError(
                    f"Policy ({role}, {resource_type}) overrides attributes for unknown action {action!r}"
                )
            if rule.allow is not None and rule.deny is not None:
                raise ConfigurationError(
                    f"Policy ({role}, {resource_type}) supplies both an allow-list and a deny-list "
                    f"for {surface.value}"
                )
            if resource_type is not None:
                known = set(self.catalog.get(resource_type).attribute_names)
                unknown = rule.names - known
                if unknown:
                    raise ConfigurationError(
                        f"Policy ({role}, {resource_type}) references undeclared attributes: {sorted(unknown)}"
                    )
            rules[surface] = rule
        return rules

    def register(self, role: str, resource_type: Optional[str], spec: PolicySpec) -> PolicyDescriptor:
        key = (role, resource_type)
        if key in self._policies:
            raise ConfigurationError(f"Policy ({role}, {resource_type}) registered twice")
        if resource_type is not None and resource_type not in self.catalog:
            raise ConfigurationError(f"Policy ({role}, {resource_type}) targets an unknown resource type")

        parent = self._parent_for(role, resource_type, spec)

        if spec.capabilities is not None:
            capabilities = frozenset(verb_name(v) for v in spec.capabilities)
        else:
            capabilities = parent.capabilities if parent else frozenset()

        scope = spec.scope or (parent.scope if parent else None)
        if scope is None:
            raise ConfigurationError(f"Policy ({role}, {resource_type}) has no scope resolver")

        conditions = dict(parent.conditions) if parent else {}
        conditions.update({verb_name(v): fn for v, fn in (spec.conditions or {}).items()})

        policy = PolicyDescriptor(
            role=role,
            resource_type=resource_type,
            capabilities=capabilities,
            scope=scope,
            conditions=MappingProxyType(conditions),
            attribute_rules=MappingProxyType(self._merge_rules(role, resource_type, parent, spec)),
            parent=parent.matched if parent else None,
            matched=key,
        )
        self._policies[key] = policy
        log.debug(f"Registered policy ({role}, {resource_type}) capabilities={sorted(capabilities)}")
        return policy

    def build(self) -> PolicyRegistry:
        log.info(f"Policy registry built with {len(self._policies)} policies")
        return PolicyRegistry(self.catalog, self._policies, self.collection_verbs)
