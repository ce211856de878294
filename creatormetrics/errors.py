"""Exceptions raised by the rollup and report engine."""


class CreatorMetricsError(Exception):
    """Base class for all creatormetrics errors."""


class InvalidRangeError(CreatorMetricsError, ValueError):
    """The requested date range is malformed."""


class UnknownScopeError(CreatorMetricsError, ValueError):
    """The requested report or export scope does not exist."""

    def __init__(self, scope, allowed):
        self.scope = scope
        self.allowed = tuple(allowed)
        super().__init__(f"Unknown scope {scope!r}; expected one of {', '.join(self.allowed)}")


class RollupError(CreatorMetricsError):
    """A tenant/day rollup could not be established at all."""

    def __init__(self, tenant_id: str, day, reason: str):
        self.tenant_id = tenant_id
        self.day = day
        super().__init__(f"Rollup failed for tenant {tenant_id} on {day}: {reason}")
