"""
The Authorizer ties the registries and components together.

It is built once at process start and passed by reference to every
request-handling path; nothing on it changes after construction.

Typical request flow:

    policies = authorizer.policies_for(principal, "widget")
    query_filter = authorizer.scope(principal, "widget")      # list
    result = authorizer.authorize(request, record=widget)     # show/update/destroy
    body = authorizer.present(principal, "widget", widget)
    authorizer.notify("widget.updated", audience, widget, session)
"""
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Tuple

from warden.core import config
from warden.features.attributes.surface import AttributeSurface
from warden.features.gate.audit import AuditSink
from warden.features.gate.gate import CapabilityGate, Decision
from warden.features.notifications.queue import Deliver, DeliveryQueue
from warden.features.notifications.router import NotificationRouter, TargetsResolver
from warden.features.notifications.schemas import BindingTable, BindingTableBuilder
from warden.features.policies.registry import PolicyRegistry
from warden.features.policies.schemas import PolicyDescriptor, SurfaceAction
from warden.features.principals.schemas import ActionRequest, Principal
from warden.features.resources.schemas import AttributeContract, ResourceContract
from warden.features.scopes.filters import Filter, Relations
from warden.features.scopes.resolver import ScopeResolver


@dataclass(frozen=True)
class AuthorizedAction:
    decision: Decision
    # Attributes the caller may return (read) or write (create/update)
    attributes: Tuple[str, ...]
    # Write payload reduced to permitted attributes; None when the request had none
    payload: Optional[Dict[str, Any]] = None


class Authorizer:
    def __init__(
        self,
        registry: PolicyRegistry,
        bindings: Optional[BindingTable] = None,
        queue: Optional[DeliveryQueue] = None,
        deliver: Optional[Deliver] = None,
        audit_sink: Optional[AuditSink] = None,
        payload_mode: str = config.PAYLOAD_MODE,
        notification_routes: Iterable[Tuple[str, TargetsResolver]] = (),
    ):
        self.registry = registry
        self.catalog = registry.catalog
        self.scopes = ScopeResolver(registry)
        self.surface = AttributeSurface(registry.catalog, payload_mode)
        self.gate = CapabilityGate(self.scopes, audit_sink)
        self.notifications = NotificationRouter(
            bindings if bindings is not None else BindingTableBuilder().build(),
            queue,
            deliver,
            notification_routes,
        )

    def policies_for(self, principal: Optional[Principal], resource_type: str) -> Tuple[PolicyDescriptor, ...]:
        return self.registry.resolve_principal(principal, resource_type)

    def scope(self, principal: Optional[Principal], resource_type: str, *conditions: Filter, verb="list") -> Filter:
        return self.scopes.scope(principal, resource_type, *conditions, verb=verb)

    def authorize(
        self,
        request: ActionRequest,
        record: Any = None,
        relations: Optional[Relations] = None,
    ) -> AuthorizedAction:
        """
        Authorize one action request.

        Raises AuthorizationDenied when the gate refuses and ValidationError
        when the payload carries non-permitted attributes (reject mode).
        """
        policies = self.policies_for(request.principal, request.resource_type)
        decision = self.gate.authorize(
            request.principal,
            policies,
            request.verb,
            record,
            relations=relations,
            record_id=request.record_id,
        )
        granting = [p for p in policies if p.permits(request.verb)]
        attributes = self.surface.permitted_for(granting, request.verb)
        payload = None
        if request.payload is not None:
            payload = self.surface.filter_payload(granting, request.verb, request.payload)
        return AuthorizedAction(decision, attributes, payload)

    def present(self, principal: Optional[Principal], resource_type: str, record: Any) -> Dict[str, Any]:
        """Project a record onto what `principal` may read."""
        granting = [p for p in self.policies_for(principal, resource_type) if p.permits("show")]
        return self.surface.filter_output(granting, record)

    def describe_resource(self, resource_type: str, role: str) -> Dict[str, Any]:
        """Attribute flags and actions one role has on a resource type."""
        schema = self.catalog.get(resource_type)
        policy = self.registry.resolve(role, resource_type)
        surfaces = {
            action: set(self.surface.permitted_attributes(policy, action))
            for action in SurfaceAction
        }
        attributes = [
            AttributeContract(
                name=attribute.name,
                type=attribute.type,
                readable=attribute.name in surfaces[SurfaceAction.READ],
                creatable=attribute.name in surfaces[SurfaceAction.CREATE],
                updatable=attribute.name in surfaces[SurfaceAction.UPDATE],
            )
            for attribute in schema.attributes
            if not attribute.hidden
        ]
        contract = ResourceContract(
            resource_type=resource_type,
            role=role,
            attributes=[a for a in attributes if a.readable or a.creatable or a.updatable],
            actions=sorted(policy.capabilities),
        )
        return contract.model_dump()

    def notify(self, key: str, resolver: TargetsResolver, record: Any, session):
        """Route a notification, released when `session` commits."""
        return self.notifications.route(key, resolver, record, session)

    def notify_now(self, key: str, resolver: TargetsResolver, record: Any):
        return self.notifications.deliver_now(key, resolver, record)
