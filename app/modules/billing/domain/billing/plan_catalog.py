"""Deploy-time allow-list of subscribable plan identifiers."""

from __future__ import annotations

from typing import Iterable, Optional

from app.shared.core.exceptions import InvalidArgumentError


class PlanCatalog:
    def __init__(self, plan_ids: Iterable[str]):
        self._plan_ids = frozenset(p.strip() for p in plan_ids if p and p.strip())

    @property
    def plan_ids(self) -> frozenset[str]:
        return self._plan_ids

    def is_allowed(self, plan_id: Optional[str]) -> bool:
        return isinstance(plan_id, str) and plan_id in self._plan_ids

    def require_allowed(self, plan_id: Optional[str]) -> str:
        """Return the plan id or raise invalid-argument when it is missing or unknown."""
        if not isinstance(plan_id, str) or not plan_id.strip():
            raise InvalidArgumentError("plan_id is required")
        if not self.is_allowed(plan_id):
            raise InvalidArgumentError(f"Plan {plan_id!r} is not available")
        return plan_id
