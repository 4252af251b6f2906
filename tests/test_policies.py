import pytest

from warden.core.errors import ConfigurationError
from warden.features.policies.registry import PolicyRegistryBuilder
from warden.features.policies.schemas import (
    ADMIN_CAPABILITIES,
    AttributeRule,
    PolicySpec,
    SurfaceAction,
    Verb,
)
from warden.features.principals.schemas import Principal
from warden.features.scopes.filters import Nothing
from warden.features.scopes.resolver import everything, owned_by


def test_exact_match_wins_over_role_default(registry):
    policy = registry.resolve("member", "widget")
    assert policy.matched == ("member", "widget")
    assert policy.parent == ("member", None)


def test_role_default_used_when_no_exact_match(registry):
    policy = registry.resolve("viewer", "widget")
    assert policy.matched == ("viewer", None)
    assert policy.resource_type == "widget"
    assert policy.capabilities == frozenset({"list", "show"})


def test_unregistered_role_is_denied(registry, catalog):
    policy = registry.resolve("stranger", "widget")
    assert policy.is_deny_all
    assert policy.capabilities == frozenset()
    assert isinstance(policy.scope(None, catalog.get("widget")), Nothing)


def test_unknown_resource_type_is_denied(registry):
    assert registry.resolve("admin", "gadget").is_deny_all


@pytest.mark.parametrize("role", ["viewer", "admin", "member", "stranger", "anonymous"])
@pytest.mark.parametrize("resource_type", ["widget", "organization", "gadget"])
def test_resolution_never_leaves_scope_or_capabilities_undefined(registry, role, resource_type):
    policy = registry.resolve(role, resource_type)
    assert policy.scope is not None
    assert isinstance(policy.capabilities, frozenset)


def test_fallback_chain_is_inspectable(registry):
    assert registry.fallback_chain("member", "widget") == [("member", "widget"), ("member", None)]


def test_override_inherits_unset_fields(registry):
    base = registry.resolve("member", "organization")
    override = registry.resolve("member", "widget")
    assert override.capabilities == base.capabilities == frozenset({"list", "show", "update"})
    assert override.scope is base.scope
    assert override.conditions["update"] is base.conditions["update"]
    assert override.rule_for("update") == AttributeRule(deny={"owner_id"})
    assert base.rule_for("update") is None


def test_explicit_parent_provides_defaults(catalog):
    builder = PolicyRegistryBuilder(catalog)
    builder.register("admin", None, PolicySpec.admin(scope=everything()))
    policy = builder.register("auditor", "widget", PolicySpec(parent="admin", capabilities=[Verb.LIST]))
    assert policy.capabilities == frozenset({"list"})
    assert policy.parent == ("admin", None)


def test_parent_must_be_registered_first(catalog):
    builder = PolicyRegistryBuilder(catalog)
    with pytest.raises(ConfigurationError):
        builder.register("editor", "widget", PolicySpec(parent="admin"))


def test_policy_without_scope_fails_registration(catalog):
    builder = PolicyRegistryBuilder(catalog)
    with pytest.raises(ConfigurationError):
        builder.register("editor", "widget", PolicySpec(capabilities=ADMIN_CAPABILITIES))


def test_allow_and_deny_for_one_action_fails_registration(catalog):
    builder = PolicyRegistryBuilder(catalog)
    builder.register("admin", None, PolicySpec.admin(scope=everything()))
    with pytest.raises(ConfigurationError):
        builder.register(
            "admin",
            "widget",
            PolicySpec(attributes={"update": AttributeRule(allow={"name"}, deny={"serial"})}),
        )


def test_allow_and_deny_on_different_actions_is_fine(catalog):
    builder = PolicyRegistryBuilder(catalog)
    builder.register("admin", None, PolicySpec.admin(scope=everything()))
    policy = builder.register(
        "admin",
        "widget",
        PolicySpec(attributes={
            SurfaceAction.READ: AttributeRule(allow={"id", "name"}),
            SurfaceAction.UPDATE: AttributeRule(deny={"name"}),
        }),
    )
    assert policy.rule_for("show").allow == frozenset({"id", "name"})


def test_rule_naming_undeclared_attribute_fails(catalog):
    builder = PolicyRegistryBuilder(catalog)
    with pytest.raises(ConfigurationError):
        builder.register(
            "admin",
            "widget",
            PolicySpec.admin(scope=everything(), attributes={"read": AttributeRule(deny={"nope"})}),
        )


def test_rule_for_unknown_action_fails(catalog):
    builder = PolicyRegistryBuilder(catalog)
    with pytest.raises(ConfigurationError):
        builder.register(
            "admin",
            "widget",
            PolicySpec.admin(scope=everything(), attributes={"archive": AttributeRule(deny={"name"})}),
        )


def test_duplicate_registration_fails(catalog):
    builder = PolicyRegistryBuilder(catalog)
    builder.register("owner", "widget", PolicySpec.viewer(scope=owned_by("owner_id")))
    with pytest.raises(ConfigurationError):
        builder.register("owner", "widget", PolicySpec.viewer(scope=owned_by("owner_id")))


def test_registration_for_unknown_resource_fails(catalog):
    builder = PolicyRegistryBuilder(catalog)
    with pytest.raises(ConfigurationError):
        builder.register("admin", "gadget", PolicySpec.admin(scope=everything()))


def test_multiple_roles_union_capabilities(registry):
    principal = Principal(id="p", roles={"viewer", "admin"})
    assert registry.capabilities_for(principal, "widget") == ADMIN_CAPABILITIES
    roles = [p.role for p in registry.resolve_principal(principal, "widget")]
    assert roles == ["admin", "viewer"]


def test_principal_without_roles_resolves_to_deny_all(registry):
    policies = registry.resolve_principal(Principal(id="p"), "widget")
    assert len(policies) == 1
    assert policies[0].is_deny_all


def test_anonymous_principal_uses_anonymous_role(catalog):
    builder = PolicyRegistryBuilder(catalog)
    builder.register("anonymous", "widget", PolicySpec(capabilities={"list"}, scope=everything()))
    registry = builder.build()
    assert registry.capabilities_for(None, "widget") == frozenset({"list"})
    assert registry.capabilities_for(None, "organization") == frozenset()
