"""
Scope resolution: which records of a resource type a principal may address.

Policies carry a scope function `(principal, schema) -> Filter`. The
factories below cover the usual shapes; any callable returning a filter
description works.
"""
from typing import Optional, Sequence

from warden.features.policies.registry import PolicyRegistry
from warden.features.policies.schemas import PolicyDescriptor, Verb
from warden.features.principals.schemas import Principal
from warden.features.resources.schemas import ResourceSchema
from warden.features.scopes.filters import (
    Eq,
    Everything,
    Exists,
    Filter,
    In,
    Nothing,
    intersect,
    union,
)
from warden.utils import get_logger


log = get_logger(__name__)


def everything():
    def scope(principal: Optional[Principal], schema: ResourceSchema) -> Filter:
        return Everything()
    return scope


def nothing():
    def scope(principal: Optional[Principal], schema: ResourceSchema) -> Filter:
        return Nothing()
    return scope


def owned_by(field: str):
    """Records whose `field` holds the principal's id."""
    def scope(principal: Optional[Principal], schema: ResourceSchema) -> Filter:
        if principal is None:
            return Nothing()
        return Eq(field=field, value=principal.id)
    return scope


def within_organizations():
    """
    Records whose primary owner is one of the principal's organizations.

    Only the schema's primary owner reference is consulted; secondary
    owners never widen or narrow this scope.
    """
    def scope(principal: Optional[Principal], schema: ResourceSchema) -> Filter:
        if principal is None or schema.primary_owner is None or not principal.organization_ids:
            return Nothing()
        return In(field=schema.primary_owner, values=tuple(sorted(principal.organization_ids)))
    return scope


def via_relation(relation: str, relation_field: str, principal_field: str, field: str = "id"):
    """
    Records joined to the principal through a relation (join table).

    `relation_field` holds the record key, `principal_field` the principal id.
    """
    def scope(principal: Optional[Principal], schema: ResourceSchema) -> Filter:
        if principal is None:
            return Nothing()
        return Exists(
            relation=relation,
            field=field,
            relation_field=relation_field,
            match={principal_field: principal.id},
        )
    return scope


def all_of(*scopes):
    """Intersect several scope functions into one."""
    def scope(principal: Optional[Principal], schema: ResourceSchema) -> Filter:
        return intersect(*[s(principal, schema) for s in scopes])
    return scope


class ScopeResolver:
    """Turns resolved policies into filter descriptions."""

    def __init__(self, registry: PolicyRegistry):
        self.registry = registry

    def policy_scope(self, policy: PolicyDescriptor, principal: Optional[Principal]) -> Filter:
        if policy.is_deny_all:
            return Nothing()
        schema = self.registry.catalog.get(policy.resource_type)
        return policy.scope(principal, schema)

    def combined(
        self,
        policies: Sequence[PolicyDescriptor],
        principal: Optional[Principal],
        verb=Verb.LIST,
    ) -> Filter:
        """OR of the scopes of the policies granting `verb`; Nothing when none does."""
        return union(*[
            self.policy_scope(policy, principal)
            for policy in policies
            if policy.permits(verb)
        ])

    def scope(
        self,
        principal: Optional[Principal],
        resource_type: str,
        *conditions: Filter,
        verb=Verb.LIST,
    ) -> Filter:
        """
        Filter narrowing `resource_type` to what `principal` may address with `verb`.

        Extra conditions are intersected with the policy scope, so they can
        only narrow the result.
        """
        policies = self.registry.resolve_principal(principal, resource_type)
        result = intersect(self.combined(policies, principal, verb), *conditions)
        log.debug(f"Scope for {principal.id if principal else 'anonymous'} on {resource_type}: {result!r}")
        return result
