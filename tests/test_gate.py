from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

from warden.core.database.base import Base
from warden.core.errors import AuthorizationDenied
from warden.features.gate.audit import DatabaseAuditSink
from warden.features.gate.gate import CapabilityGate
from warden.features.gate.models import AuditLog
from warden.features.principals.schemas import Principal
from warden.features.scopes.resolver import ScopeResolver


FIXED = datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def gate(registry, audit_sink):
    return CapabilityGate(ScopeResolver(registry), audit_sink, clock=lambda: FIXED)


def widget(widgets, record_id):
    return next(w for w in widgets if w["id"] == record_id)


def test_collection_verb_checks_capability_only(gate, registry, carol):
    decision = gate.check(carol, registry.resolve_principal(carol, "widget"), "list")
    assert decision.allowed
    assert decision.role == "member"


def test_missing_capability_is_forbidden(gate, registry, viewer, widgets):
    decision = gate.check(viewer, registry.resolve_principal(viewer, "widget"), "destroy", widget(widgets, "w1"))
    assert not decision
    assert decision.reason == AuthorizationDenied.FORBIDDEN


def test_record_in_scope_is_allowed(gate, registry, alice, widgets, relations):
    policies = registry.resolve_principal(alice, "widget")
    assert gate.check(alice, policies, "show", widget(widgets, "w1"), relations).allowed


def test_member_without_join_rows_cannot_show(gate, registry, carol, widgets, relations):
    policies = registry.resolve_principal(carol, "widget")
    with pytest.raises(AuthorizationDenied) as excinfo:
        gate.authorize(carol, policies, "show", widget(widgets, "w1"), relations)
    assert excinfo.value.not_found


@pytest.mark.parametrize("verb", ["show", "update"])
def test_out_of_scope_is_indistinguishable_from_missing(gate, registry, alice, widgets, relations, verb):
    policies = registry.resolve_principal(alice, "widget")
    out_of_scope = gate.check(alice, policies, verb, widget(widgets, "w2"), relations)
    missing = gate.check(alice, policies, verb, None, relations, record_id="w404")
    assert (out_of_scope.allowed, out_of_scope.reason) == (missing.allowed, missing.reason)
    assert out_of_scope.reason == AuthorizationDenied.NOT_FOUND


def test_destroy_out_of_scope_matches_missing_for_admin_scope(catalog, audit_sink, widgets):
    from warden.features.policies.registry import PolicyRegistryBuilder
    from warden.features.policies.schemas import PolicySpec
    from warden.features.scopes.resolver import owned_by

    builder = PolicyRegistryBuilder(catalog)
    builder.register("owner", "widget", PolicySpec.admin(scope=owned_by("owner_id")))
    registry = builder.build()
    gate = CapabilityGate(ScopeResolver(registry), audit_sink)
    bob = Principal(id="bob", roles={"owner"})
    policies = registry.resolve_principal(bob, "widget")

    assert gate.check(bob, policies, "destroy", widget(widgets, "w2")).allowed
    out_of_scope = gate.check(bob, policies, "destroy", widget(widgets, "w1"))
    missing = gate.check(bob, policies, "destroy", None, record_id="w404")
    assert out_of_scope.reason == missing.reason == AuthorizationDenied.NOT_FOUND


def test_policy_condition_on_in_scope_record_is_distinct(gate, registry, alice, widgets, relations):
    policies = registry.resolve_principal(alice, "widget")
    decision = gate.check(alice, policies, "update", widget(widgets, "w3"), relations)
    assert not decision.allowed
    assert decision.reason == AuthorizationDenied.CONDITION
    assert gate.check(alice, policies, "update", widget(widgets, "w1"), relations).allowed


def test_anonymous_is_denied_without_policy(gate, registry):
    decision = gate.check(None, registry.resolve_principal(None, "widget"), "list")
    assert decision.reason == AuthorizationDenied.FORBIDDEN


def test_every_check_is_audited(gate, registry, alice, carol, widgets, relations, audit_sink):
    gate.check(alice, registry.resolve_principal(alice, "widget"), "show", widget(widgets, "w1"), relations)
    gate.check(carol, registry.resolve_principal(carol, "widget"), "show", widget(widgets, "w1"), relations)

    first, second = audit_sink.records
    assert (first.actor, first.action, first.resource_type, first.resource_id, first.decision) == (
        "alice", "show", "widget", "w1", "allow",
    )
    assert (second.actor, second.decision, second.reason) == ("carol", "deny", "not_found")
    assert first.timestamp == FIXED


def test_denied_authorize_is_still_audited(gate, registry, viewer, audit_sink):
    with pytest.raises(AuthorizationDenied):
        gate.authorize(viewer, registry.resolve_principal(viewer, "widget"), "destroy", None, record_id="w1")
    assert [r.decision for r in audit_sink.records] == ["deny"]


def test_database_sink_writes_audit_rows(registry, alice, widgets, relations):
    engine = create_engine("sqlite://")
    Base.metadata.create_all(engine)
    session_factory = sessionmaker(engine, expire_on_commit=False)
    gate = CapabilityGate(ScopeResolver(registry), DatabaseAuditSink(session_factory), clock=lambda: FIXED)

    gate.check(alice, registry.resolve_principal(alice, "widget"), "show", widget(widgets, "w2"), relations)

    with session_factory() as session:
        rows = session.execute(select(AuditLog)).scalars().all()
    assert len(rows) == 1
    assert (rows[0].actor_id, rows[0].action, rows[0].resource_id, rows[0].decision, rows[0].reason) == (
        "alice", "show", "w2", "deny", "not_found",
    )
