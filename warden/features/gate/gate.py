"""
Capability checks for a principal acting on a resource type or record.

Collection verbs (list, create) only need the verb in a capability set;
which records the caller sees is left to the scope filter. Record verbs
additionally need the record inside the scope of a role granting the
verb. A missing record and an out-of-scope record produce the same
"not_found" denial.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Sequence, Union

from warden.core.errors import AuthorizationDenied
from warden.features.gate.audit import AuditRecord, AuditSink, LoggingAuditSink
from warden.features.policies.schemas import PolicyDescriptor, verb_name
from warden.features.principals.schemas import Principal, actor_of
from warden.features.scopes.filters import Relations, value_of, matches
from warden.features.scopes.resolver import ScopeResolver
from warden.utils import get_logger


log = get_logger(__name__)


@dataclass(frozen=True)
class Decision:
    allowed: bool
    verb: str
    resource_type: str
    resource_id: Optional[str] = None
    reason: Optional[str] = None
    # Role whose policy granted the action
    role: Optional[str] = None

    def __bool__(self) -> bool:
        return self.allowed


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CapabilityGate:
    def __init__(
        self,
        scopes: ScopeResolver,
        sink: Optional[AuditSink] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.scopes = scopes
        self.sink = sink or LoggingAuditSink()
        self.clock = clock

    def _decide(
        self,
        principal: Optional[Principal],
        policies: Sequence[PolicyDescriptor],
        verb: str,
        resource_type: str,
        record: Any,
        relations: Optional[Relations],
        resource_id: Optional[str],
    ) -> Decision:
        granting = [p for p in policies if p.permits(verb)]
        if not granting:
            return Decision(False, verb, resource_type, resource_id, AuthorizationDenied.FORBIDDEN)

        if self.scopes.registry.is_collection_verb(verb):
            return Decision(True, verb, resource_type, resource_id, role=granting[0].role)

        if record is None:
            return Decision(False, verb, resource_type, resource_id, AuthorizationDenied.NOT_FOUND)

        in_scope = [
            p for p in granting
            if matches(self.scopes.policy_scope(p, principal), record, relations)
        ]
        if not in_scope:
            return Decision(False, verb, resource_type, resource_id, AuthorizationDenied.NOT_FOUND)

        for policy in in_scope:
            condition = policy.conditions.get(verb)
            if condition is None or condition(principal, record):
                return Decision(True, verb, resource_type, resource_id, role=policy.role)

        return Decision(False, verb, resource_type, resource_id, AuthorizationDenied.CONDITION)

    def check(
        self,
        principal: Optional[Principal],
        policies: Union[PolicyDescriptor, Sequence[PolicyDescriptor]],
        verb,
        record: Any = None,
        relations: Optional[Relations] = None,
        record_id: Optional[str] = None,
    ) -> Decision:
        """
        Decide whether `principal` may perform `verb`, emitting one audit record.

        `policies` are the principal's resolved policies for a single
        resource type. `relations` supplies join rows for Exists scopes.
        """
        if isinstance(policies, PolicyDescriptor):
            policies = (policies,)
        verb = verb_name(verb)
        resource_type = policies[0].resource_type
        if record_id is None and record is not None:
            found = value_of(record, "id")
            record_id = str(found) if found is not None else None

        decision = self._decide(principal, policies, verb, resource_type, record, relations, record_id)

        self.sink.emit(AuditRecord(
            actor=actor_of(principal),
            action=verb,
            resource_type=resource_type,
            resource_id=record_id,
            decision="allow" if decision.allowed else "deny",
            timestamp=self.clock(),
            reason=decision.reason,
            role=decision.role,
        ))
        if not decision.allowed:
            log.debug(f"Denied {verb} on {resource_type}:{record_id} for {actor_of(principal)} ({decision.reason})")
        return decision

    def authorize(self, *args, **kwargs) -> Decision:
        """Like check(), but raises AuthorizationDenied on denial."""
        decision = self.check(*args, **kwargs)
        if not decision.allowed:
            raise AuthorizationDenied(decision.reason, decision.resource_type, decision.verb)
        return decision
