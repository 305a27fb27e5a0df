from __future__ import annotations


class WhatIfError(Exception):
    """Base class for domain errors."""


class SnapshotReadError(WhatIfError):
    pass


class ValidationError(WhatIfError, ValueError):
    pass


class PersistenceError(WhatIfError):
    pass


class ScenarioNotFound(WhatIfError, KeyError):
    def __init__(self, tenant_id: str, scenario_id: str):
        super().__init__(f"scenario {scenario_id!r} not found for tenant {tenant_id!r}")
        self.tenant_id = tenant_id
        self.scenario_id = scenario_id

    def __str__(self) -> str:
        return self.args[0]


class RequestSuperseded(WhatIfError):
    """A newer request for the same key was issued while this one ran."""
