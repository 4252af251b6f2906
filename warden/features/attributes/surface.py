"""
Attribute surfaces: which fields are returned, accepted on create and
accepted on update, per resolved policy.

The computation starts from the schema and only ever removes names, so
every surface is a subset of the declared attributes:

1. attributes whose visibility flag for the surface is set
2. minus hidden attributes (permanent denylist)
3. minus immutable attributes on the update surface
4. intersected with the policy allow-list, or minus its deny-list
"""
from collections.abc import Mapping
from typing import Any, Dict, Optional, Sequence, Tuple, Union

from warden.core import config
from warden.core.errors import ConfigurationError, ValidationError
from warden.features.policies.schemas import PolicyDescriptor, SurfaceAction, surface_for
from warden.features.resources.schemas import AttributeSpec, ResourceCatalog
from warden.utils import get_logger


log = get_logger(__name__)

PAYLOAD_REJECT = "reject"
PAYLOAD_STRIP = "strip"

Policies = Union[PolicyDescriptor, Sequence[PolicyDescriptor]]


def _flag(attribute: AttributeSpec, surface: SurfaceAction) -> bool:
    if surface is SurfaceAction.READ:
        return attribute.readable
    if surface is SurfaceAction.CREATE:
        return attribute.creatable
    return attribute.updatable and not attribute.immutable


def _as_tuple(policies: Policies) -> Tuple[PolicyDescriptor, ...]:
    if isinstance(policies, PolicyDescriptor):
        return (policies,)
    return tuple(policies)


class AttributeSurface:
    def __init__(self, catalog: ResourceCatalog, payload_mode: str = config.PAYLOAD_MODE):
        if payload_mode not in (PAYLOAD_REJECT, PAYLOAD_STRIP):
            raise ConfigurationError(f"Unknown payload mode {payload_mode!r}")
        self.catalog = catalog
        self.payload_mode = payload_mode

    @staticmethod
    def grants_surface(policy: PolicyDescriptor, surface: SurfaceAction) -> bool:
        return any(surface_for(verb) is surface for verb in policy.capabilities)

    def permitted_attributes(self, policy: PolicyDescriptor, action) -> Tuple[str, ...]:
        """Ordered attribute names `policy` exposes or accepts for `action` (a verb or surface)."""
        surface = surface_for(action)
        if policy.is_deny_all or not self.grants_surface(policy, surface):
            return ()

        schema = self.catalog.get(policy.resource_type)
        names = [a.name for a in schema.attributes if not a.hidden and _flag(a, surface)]

        rule = policy.rule_for(surface)
        if rule is not None and rule.allow is not None:
            names = [name for name in names if name in rule.allow]
        elif rule is not None and rule.deny is not None:
            names = [name for name in names if name not in rule.deny]
        return tuple(names)

    def permitted_for(self, policies: Policies, action) -> Tuple[str, ...]:
        """Union of the surfaces of several roles, in schema order."""
        policies = _as_tuple(policies)
        permitted = set()
        for policy in policies:
            permitted.update(self.permitted_attributes(policy, action))
        if not permitted:
            return ()
        schema = self.catalog.get(policies[0].resource_type)
        return tuple(name for name in schema.attribute_names if name in permitted)

    def filter_payload(
        self,
        policies: Policies,
        action,
        payload: Mapping,
        mode: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Check a write payload against the permitted surface.

        In reject mode any extra attribute raises ValidationError naming all
        of them. In strip mode extras are dropped and logged.
        """
        mode = mode or self.payload_mode
        policies = _as_tuple(policies)
        permitted = set(self.permitted_for(policies, action))
        extra = set(payload) - permitted
        if extra:
            resource_type = policies[0].resource_type if policies else ""
            if mode == PAYLOAD_REJECT:
                raise ValidationError(resource_type, surface_for(action).value, extra)
            log.info(f"Stripping attributes {sorted(extra)} from {surface_for(action).value} on {resource_type}")
        return {key: value for key, value in payload.items() if key in permitted}

    def filter_output(self, policies: Policies, record: Any) -> Dict[str, Any]:
        """Project a record (mapping or object) onto the read surface."""
        output = {}
        for name in self.permitted_for(policies, SurfaceAction.READ):
            if isinstance(record, Mapping):
                if name in record:
                    output[name] = record[name]
            elif hasattr(record, name):
                output[name] = getattr(record, name)
        return output
