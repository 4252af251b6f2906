"""
Filter descriptions produced by scope resolution.

A filter is an abstract, JSON-serializable boolean tree. The external
query layer executes it; this module only evaluates it in memory against
records already at hand (`matches`) or compiles it to a SQLAlchemy clause
(`to_clause`). Neither path performs I/O.
"""
from collections.abc import Mapping
from typing import Annotated, Any, Dict, Iterable, Literal, Optional, Tuple, Union
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from sqlalchemy import Table, and_, false, or_, select, true
from sqlalchemy.sql.elements import ColumnElement


class _Node(BaseModel):
    model_config = ConfigDict(frozen=True)


class Everything(_Node):
    kind: Literal["all"] = "all"


class Nothing(_Node):
    kind: Literal["none"] = "none"


class Eq(_Node):
    """record[field] == value"""
    kind: Literal["eq"] = "eq"
    field: str
    value: Any


class In(_Node):
    """record[field] is one of values"""
    kind: Literal["in"] = "in"
    field: str
    values: Tuple[Any, ...]


class Exists(_Node):
    """
    record[field] is in the set of row[relation_field] for rows of
    `relation` whose columns equal every entry of `match`.

    Example: a widget is visible to a member when a `widget_members` row
    joins the widget id to the member id:

        Exists(relation="widget_members", field="id",
               relation_field="widget_id", match={"member_id": principal.id})
    """
    kind: Literal["exists"] = "exists"
    relation: str
    field: str = "id"
    relation_field: str
    match: Dict[str, Any] = Field(default_factory=dict)


class And(_Node):
    kind: Literal["and"] = "and"
    conditions: Tuple["Filter", ...]


class Or(_Node):
    kind: Literal["or"] = "or"
    conditions: Tuple["Filter", ...]


Filter = Annotated[
    Union[Everything, Nothing, Eq, In, Exists, And, Or],
    Field(discriminator="kind"),
]

And.model_rebuild()
Or.model_rebuild()

FilterAdapter = TypeAdapter(Filter)

Relations = Mapping[str, Iterable[Mapping[str, Any]]]


def intersect(*filters) -> "Filter":
    """
    Combine conditions by intersection.

    The result never admits a record that any single input rejects.
    Nested intersections are flattened, Everything is dropped and any
    Nothing collapses the whole result.
    """
    flat = []
    for item in filters:
        if isinstance(item, Nothing):
            return Nothing()
        if isinstance(item, Everything):
            continue
        if isinstance(item, And):
            flat.extend(item.conditions)
        else:
            flat.append(item)
    if not flat:
        return Everything()
    if len(flat) == 1:
        return flat[0]
    return And(conditions=tuple(flat))


def union(*filters) -> "Filter":
    """Combine alternative scopes, e.g. those of several roles granting one verb."""
    flat = []
    for item in filters:
        if isinstance(item, Everything):
            return Everything()
        if isinstance(item, Nothing):
            continue
        if isinstance(item, Or):
            flat.extend(item.conditions)
        else:
            flat.append(item)
    if not flat:
        return Nothing()
    if len(flat) == 1:
        return flat[0]
    return Or(conditions=tuple(flat))


def value_of(record: Any, field: str) -> Any:
    if isinstance(record, Mapping):
        return record.get(field)
    return getattr(record, field, None)


def matches(condition: "Filter", record: Any, relations: Optional[Relations] = None) -> bool:
    """Evaluate a filter against one record; `relations` supplies rows for Exists."""
    if isinstance(condition, Everything):
        return True
    if isinstance(condition, Nothing):
        return False
    if isinstance(condition, Eq):
        return value_of(record, condition.field) == condition.value
    if isinstance(condition, In):
        return value_of(record, condition.field) in condition.values
    if isinstance(condition, Exists):
        rows = (relations or {}).get(condition.relation, ())
        wanted = value_of(record, condition.field)
        return any(
            value_of(row, condition.relation_field) == wanted
            and all(value_of(row, k) == v for k, v in condition.match.items())
            for row in rows
        )
    if isinstance(condition, And):
        return all(matches(c, record, relations) for c in condition.conditions)
    if isinstance(condition, Or):
        return any(matches(c, record, relations) for c in condition.conditions)
    raise TypeError(f"Unsupported filter node: {condition!r}")


def select_matching(condition: "Filter", records: Iterable[Any], relations: Optional[Relations] = None) -> list:
    return [record for record in records if matches(condition, record, relations)]


def to_clause(condition: "Filter", table: Table, tables: Optional[Mapping[str, Table]] = None) -> ColumnElement:
    """
    Compile a filter to a SQLAlchemy boolean clause over `table`.

    `tables` maps relation names used by Exists nodes to their Table objects.
    """
    if isinstance(condition, Everything):
        return true()
    if isinstance(condition, Nothing):
        return false()
    if isinstance(condition, Eq):
        return table.c[condition.field] == condition.value
    if isinstance(condition, In):
        return table.c[condition.field].in_(condition.values)
    if isinstance(condition, Exists):
        relation = (tables or {})[condition.relation]
        subquery = select(relation.c[condition.relation_field]).where(
            *[relation.c[k] == v for k, v in condition.match.items()]
        )
        return table.c[condition.field].in_(subquery)
    if isinstance(condition, And):
        return and_(*[to_clause(c, table, tables) for c in condition.conditions])
    if isinstance(condition, Or):
        return or_(*[to_clause(c, table, tables) for c in condition.conditions])
    raise TypeError(f"Unsupported filter node: {condition!r}")
