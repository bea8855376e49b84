"""
Budget availability for a fund's breakdowns.

The calculation is a pure function over the parent's allocated amount and the
sibling breakdowns. Callers pass whatever they have loaded; a missing parent is
reported as ``is_loading`` rather than as zero capacity so the two states are
never confused.
"""
from typing import Iterable, Any
from pydantic import BaseModel


class BudgetAvailability(BaseModel):
    is_loading: bool = False
    parent_total: float = 0.0
    already_allocated: float = 0.0
    # Raw remainder, negative when siblings already exceed the parent
    available: float = 0.0
    capacity: float = 0.0
    is_exceeded: bool = False
    difference: float = 0.0


def _sibling_fields(sibling: Any) -> tuple[Any, float, bool]:
    if isinstance(sibling, dict):
        return (
            sibling.get("id"),
            sibling.get("allocated_budget") or 0,
            bool(sibling.get("is_deleted")),
        )
    if isinstance(sibling, tuple):
        sibling_id, allocated = sibling[0], sibling[1]
        return sibling_id, allocated or 0, False
    return (
        sibling.id,
        sibling.allocated_budget or 0,
        bool(getattr(sibling, "is_deleted", False)),
    )


def compute_availability(
    parent_total: float | None,
    siblings: Iterable[Any] | None,
    exclude_id: int | None = None,
    candidate_amount: float = 0.0,
) -> BudgetAvailability:
    """Compute how much of the parent allocation is still free.

    ``siblings`` may hold breakdown rows, dicts or ``(id, allocated)`` tuples.
    Trashed siblings and the record being edited (``exclude_id``) never count.
    """
    if parent_total is None or siblings is None:
        return BudgetAvailability(is_loading=True)

    already_allocated = 0.0
    for sibling in siblings:
        sibling_id, allocated, is_deleted = _sibling_fields(sibling)
        if is_deleted:
            continue
        if exclude_id is not None and sibling_id == exclude_id:
            continue
        already_allocated += float(allocated)

    parent_total = float(parent_total)
    candidate_amount = float(candidate_amount or 0)
    available = parent_total - already_allocated
    return BudgetAvailability(
        parent_total=parent_total,
        already_allocated=already_allocated,
        available=available,
        capacity=max(available, 0.0),
        is_exceeded=candidate_amount > available,
        difference=candidate_amount - available,
    )
