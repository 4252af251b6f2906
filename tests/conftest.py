import pytest

from warden.authorization import Authorizer
from warden.features.gate.audit import MemoryAuditSink
from warden.features.notifications.queue import RecordingQueue
from warden.features.notifications.schemas import BindingTableBuilder, targets
from warden.features.policies.registry import PolicyRegistryBuilder
from warden.features.policies.schemas import AttributeRule, PolicySpec
from warden.features.principals.schemas import Principal
from warden.features.resources.schemas import (
    AttributeSpec,
    CatalogBuilder,
    OwnerReference,
    ResourceSchema,
)
from warden.features.scopes.resolver import everything, via_relation, within_organizations


WIDGET = ResourceSchema(
    name="widget",
    attributes=(
        AttributeSpec(name="id", readable=True, creatable=False, updatable=False),
        AttributeSpec(name="name"),
        AttributeSpec(name="organization_id"),
        AttributeSpec(name="team_id"),
        AttributeSpec(name="owner_id"),
        AttributeSpec(name="serial", immutable=True),
        AttributeSpec(name="active", type="boolean"),
        AttributeSpec(name="secret_token", hidden=True),
        AttributeSpec(name="created_by", creatable=False, updatable=False),
    ),
    owners=(
        OwnerReference(attribute="organization_id", resource_type="organization"),
        OwnerReference(attribute="team_id", resource_type="team"),
    ),
    primary_owner="organization_id",
)

ORGANIZATION = ResourceSchema(
    name="organization",
    attributes=(
        AttributeSpec(name="id", creatable=False, updatable=False),
        AttributeSpec(name="name"),
    ),
)


def record_is_active(principal, record):
    return bool(record.get("active"))


@pytest.fixture
def catalog():
    return CatalogBuilder().add(WIDGET).add(ORGANIZATION).build()


@pytest.fixture
def registry_builder(catalog):
    builder = PolicyRegistryBuilder(catalog)
    builder.register("viewer", None, PolicySpec.viewer(scope=within_organizations()))
    builder.register("admin", None, PolicySpec.admin(scope=everything()))
    builder.register(
        "member",
        None,
        PolicySpec(
            parent="viewer",
            capabilities={"list", "show", "update"},
            scope=via_relation("widget_members", relation_field="widget_id", principal_field="member_id"),
            conditions={"update": record_is_active},
        ),
    )
    builder.register(
        "member",
        "widget",
        PolicySpec(attributes={"update": AttributeRule(deny={"owner_id"})}),
    )
    return builder


@pytest.fixture
def registry(registry_builder):
    return registry_builder.build()


@pytest.fixture
def widgets():
    return [
        {"id": "w1", "name": "Alpha", "organization_id": "o1", "team_id": "t1", "owner_id": "alice",
         "serial": "S1", "active": True, "secret_token": "x1", "created_by": "alice"},
        {"id": "w2", "name": "Beta", "organization_id": "o2", "team_id": "t1", "owner_id": "bob",
         "serial": "S2", "active": True, "secret_token": "x2", "created_by": "bob"},
        {"id": "w3", "name": "Gamma", "organization_id": "o1", "team_id": "t2", "owner_id": "bob",
         "serial": "S3", "active": False, "secret_token": "x3", "created_by": "bob"},
    ]


@pytest.fixture
def relations():
    return {
        "widget_members": [
            {"widget_id": "w1", "member_id": "alice"},
            {"widget_id": "w3", "member_id": "alice"},
        ],
    }


@pytest.fixture
def alice():
    return Principal(id="alice", roles={"member"}, organization_ids={"o1"})


@pytest.fixture
def carol():
    return Principal(id="carol", roles={"member"}, organization_ids={"o1"})


@pytest.fixture
def viewer():
    return Principal(id="victor", roles={"viewer"}, organization_ids={"o1"})


@targets("owners", "watchers")
def widget_audience(record, key):
    yield "owners", record["owner_id"]
    for watcher in record.get("watchers", ()):
        yield "watchers", watcher


@pytest.fixture
def bindings():
    return (
        BindingTableBuilder()
        .bind("widget.created", "owners")
        .bind("widget.created", "watchers")
        .bind("widget.updated", "owners")
        .bind("widget.updated", "watchers")
        .expect("widget.created", widget_audience)
        .expect("widget.updated", widget_audience)
        .build()
    )


@pytest.fixture
def audit_sink():
    return MemoryAuditSink()


@pytest.fixture
def queue():
    return RecordingQueue()


@pytest.fixture
def delivered():
    return []


@pytest.fixture
def authorizer(registry, bindings, queue, audit_sink, delivered):
    return Authorizer(
        registry,
        bindings,
        queue=queue,
        deliver=lambda target, template, record: delivered.append((target, template, record["id"])),
        audit_sink=audit_sink,
    )
