"""
Notification bindings: (event key, target group) -> template path.

Keys have the form "<resourceType>.<event>". The binding table is built
and validated once at startup and is read-only afterwards.
"""
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Iterable, NamedTuple, Optional, Tuple
from pydantic import BaseModel, ConfigDict

from warden.core.errors import ConfigurationError
from warden.utils import get_logger


log = get_logger(__name__)


class NotificationBinding(BaseModel):
    key: str
    target_group: str
    template_path: str

    model_config = ConfigDict(frozen=True)


class Delivery(NamedTuple):
    """What the rendering/delivery collaborator receives."""
    target: Any
    template_path: str
    record: Any


def split_key(key: str) -> Tuple[str, str]:
    resource, sep, event = key.partition(".")
    if not sep or not resource or not event or "." in event:
        raise ConfigurationError(f"Notification key {key!r} is not of the form '<resource>.<event>'")
    return resource, event


def pluralize(group: str) -> str:
    return group if group.endswith("s") else f"{group}s"


def default_template(key: str, target_group: str) -> str:
    resource, event = split_key(key)
    return f"{pluralize(target_group)}/{resource}/{event}"


def targets(*groups: str):
    """
    Declare the target groups a resolver can return, so bindings for them
    are checked when the table is built:

        @targets("owners", "watchers")
        def widget_audience(record, key):
            yield "owners", record["owner_id"]
    """
    def decorate(fn):
        fn.groups = frozenset(groups)
        return fn
    return decorate


class BindingTable:
    def __init__(
        self,
        bindings: Dict[Tuple[str, str], NotificationBinding],
        expected: Optional[Dict[str, FrozenSet[str]]] = None,
    ):
        self._bindings = MappingProxyType(dict(bindings))
        # Target groups declared per key at startup, each fully bound
        self.expected = MappingProxyType({key: frozenset(groups) for key, groups in (expected or {}).items()})

    def __len__(self) -> int:
        return len(self._bindings)

    @property
    def keys(self) -> FrozenSet[str]:
        return frozenset(key for key, _ in self._bindings)

    def groups_for(self, key: str) -> FrozenSet[str]:
        return frozenset(group for k, group in self._bindings if k == key)

    def binding(self, key: str, target_group: str) -> NotificationBinding:
        try:
            return self._bindings[(key, target_group)]
        except KeyError:
            raise ConfigurationError(f"No notification binding for {key!r} and target group {target_group!r}")

    def check_resolver(self, key: str, resolver) -> FrozenSet[str]:
        """
        The target groups `resolver` may yield for `key`.

        Only keys declared with BindingTableBuilder.expect() can be routed,
        and only through a resolver whose @targets groups were checked then.
        """
        if key not in self.expected:
            raise ConfigurationError(f"Notification key {key!r} was not declared with expect() at startup")
        declared = getattr(resolver, "groups", None)
        if declared is None:
            raise ConfigurationError(f"Resolver for {key!r} does not declare its target groups")
        undeclared = sorted(set(declared) - self.expected[key])
        if undeclared:
            raise ConfigurationError(
                f"Resolver for {key!r} targets groups not declared with expect() at startup: {undeclared}"
            )
        return frozenset(declared)


class BindingTableBuilder:
    def __init__(self):
        self._bindings: Dict[Tuple[str, str], NotificationBinding] = {}
        self._expected: Dict[str, set] = {}

    def bind(self, key: str, target_group: str, template_path: str = None) -> "BindingTableBuilder":
        split_key(key)
        if (key, target_group) in self._bindings:
            raise ConfigurationError(f"Duplicate notification binding for {key!r} and {target_group!r}")
        self._bindings[(key, target_group)] = NotificationBinding(
            key=key,
            target_group=target_group,
            template_path=template_path or default_template(key, target_group),
        )
        return self

    def expect(self, key: str, groups) -> "BindingTableBuilder":
        """Require bindings for `groups` (names, or a resolver decorated with @targets)."""
        split_key(key)
        if callable(groups):
            declared = getattr(groups, "groups", None)
            if declared is None:
                raise ConfigurationError(f"Resolver for {key!r} does not declare its target groups")
            groups = declared
        self._expected.setdefault(key, set()).update(groups)
        return self

    def build(self) -> BindingTable:
        missing = sorted(
            (key, group)
            for key, groups in self._expected.items()
            for group in groups
            if (key, group) not in self._bindings
        )
        if missing:
            raise ConfigurationError(f"Notification keys without bindings: {missing}")
        log.info(f"Notification binding table built with {len(self._bindings)} bindings")
        return BindingTable(self._bindings, self._expected)


def group_targets(pairs: Iterable[Tuple[str, Any]]) -> Dict[str, list]:
    """Group (target_group, target) pairs, keeping first-seen order."""
    grouped: Dict[str, list] = {}
    for group, target in pairs:
        grouped.setdefault(group, []).append(target)
    return grouped
