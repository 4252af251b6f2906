"""
Per-request inputs: the acting principal and the action it attempts.
"""
from typing import Any, Dict, FrozenSet, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator


ANONYMOUS_ROLE = "anonymous"


class Principal(BaseModel):
    """The authenticated actor. Immutable for the lifetime of a request."""
    id: str = Field(..., min_length=1)
    roles: FrozenSet[str] = frozenset()
    organization_ids: FrozenSet[str] = frozenset()
    attributes: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)


class ActionRequest(BaseModel):
    """
    A single attempted action.

    `principal` is None for anonymous callers. `record_id` is set for
    record-level verbs (show, update, destroy, custom record verbs).
    """
    principal: Optional[Principal] = None
    verb: str = Field(..., min_length=1)
    resource_type: str = Field(..., min_length=1)
    record_id: Optional[str] = None
    payload: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(frozen=True)

    @field_validator("verb")
    @classmethod
    def verb_lowercase(cls, v: str) -> str:
        return v.lower()


def roles_of(principal: Optional[Principal]) -> FrozenSet[str]:
    """Roles to resolve for a principal; anonymous callers get the anonymous role."""
    if principal is None:
        return frozenset({ANONYMOUS_ROLE})
    return principal.roles


def actor_of(principal: Optional[Principal]) -> Optional[str]:
    return principal.id if principal is not None else None
