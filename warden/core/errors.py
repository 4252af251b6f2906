"""
Error types raised by the authorization engine.

ConfigurationError is fatal and raised while the registries are being
built. AuthorizationDenied and ValidationError are per-request.
"""
from typing import Iterable


class WardenError(Exception):
    """Base class for all engine errors."""


class ConfigurationError(WardenError):
    """Invalid policy, schema or notification configuration detected at startup."""


class AuthorizationDenied(WardenError):
    """
    An action was refused.

    `reason` is one of:
    - "not_found": the record is missing or outside the principal's scope.
      Both cases carry this same reason.
    - "forbidden": the verb is not in any capability set.
    - "condition": a policy condition refused an in-scope record.
    """
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    CONDITION = "condition"

    def __init__(self, reason: str, resource_type: str, verb: str):
        self.reason = reason
        self.resource_type = resource_type
        self.verb = verb
        super().__init__(f"{verb} on {resource_type} denied ({reason})")

    @property
    def not_found(self) -> bool:
        return self.reason == self.NOT_FOUND


class ValidationError(WardenError):
    """A write payload carried attributes outside the permitted surface."""

    def __init__(self, resource_type: str, action: str, attributes: Iterable[str]):
        self.resource_type = resource_type
        self.action = action
        self.attributes = sorted(attributes)
        super().__init__(
            f"Attributes not permitted for {action} on {resource_type}: {', '.join(self.attributes)}"
        )
