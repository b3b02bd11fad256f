"""Error taxonomy for the routing/escalation core."""

from dataclasses import dataclass


@dataclass(frozen=True)
class FieldError:
    item_id: str
    field: str
    message: str


class RoutingCoreError(Exception):
    """Base class for errors surfaced by the core."""


class ValidationFailure(RoutingCoreError):
    """A batch violates a required-field rule. Nothing in the batch is persisted."""

    def __init__(self, errors: list[FieldError]):
        self.errors = list(errors)
        summary = "; ".join(f"{e.item_id}.{e.field}: {e.message}" for e in self.errors)
        super().__init__(f"Validation failed: {summary}")


class DependencyFailure(RoutingCoreError):
    """A store, queue or notification collaborator failed."""

    def __init__(self, component: str, message: str):
        self.component = component
        super().__init__(message)


class ItemNotFound(RoutingCoreError):
    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"Work item {item_id} not found")
