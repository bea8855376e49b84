from pydantic import BaseModel, Field, computed_field

from budget_tracker.services.availability import BudgetAvailability

ALLOCATION_EXCEEDS_AVAILABLE = "allocation_exceeds_available"
UTILIZED_EXCEEDS_ALLOCATED = "utilized_exceeds_allocated"
OBLIGATED_EXCEEDS_PARENT = "obligated_exceeds_parent"
UTILIZED_EXCEEDS_PARENT = "utilized_exceeds_parent"

VIOLATION_LABELS = {
    ALLOCATION_EXCEEDS_AVAILABLE: "Allocated budget exceeds the parent fund's available budget.",
    UTILIZED_EXCEEDS_ALLOCATED: "Utilized budget exceeds the allocated budget of this item.",
    OBLIGATED_EXCEEDS_PARENT: "Obligated budget exceeds the parent fund's total allocated budget.",
    UTILIZED_EXCEEDS_PARENT: "Utilized budget exceeds the parent fund's total allocated budget.",
}


class Violation(BaseModel):
    code: str
    label: str
    amount: float
    limit: float
    difference: float


class ViolationReport(BaseModel):
    violations: list[Violation] = Field(default_factory=list)
    availability: BudgetAvailability | None = None

    @computed_field
    @property
    def has_violations(self) -> bool:
        return bool(self.violations)

    @property
    def codes(self) -> list[str]:
        return [v.code for v in self.violations]


def _violation(code: str, amount: float, limit: float) -> Violation:
    return Violation(
        code=code,
        label=VIOLATION_LABELS[code],
        amount=amount,
        limit=limit,
        difference=amount - limit,
    )


def detect_violations(
    availability: BudgetAvailability,
    allocated: float | None,
    utilized: float | None,
    obligated: float | None,
) -> ViolationReport:
    """Run every budget check and report all that fail.

    Checks against the parent's total only apply when the parent actually has
    a positive allocation. An availability that is still loading yields no
    parent-relative violations.
    """
    allocated = float(allocated or 0)
    utilized = float(utilized or 0)
    obligated = float(obligated or 0)
    violations = []

    if not availability.is_loading and allocated > availability.available:
        violations.append(_violation(ALLOCATION_EXCEEDS_AVAILABLE, allocated, availability.available))

    if utilized > allocated:
        violations.append(_violation(UTILIZED_EXCEEDS_ALLOCATED, utilized, allocated))

    parent_total = availability.parent_total
    if not availability.is_loading and parent_total > 0:
        if obligated > parent_total:
            violations.append(_violation(OBLIGATED_EXCEEDS_PARENT, obligated, parent_total))
        if utilized > parent_total:
            violations.append(_violation(UTILIZED_EXCEEDS_PARENT, utilized, parent_total))

    return ViolationReport(violations=violations, availability=availability)
