def calculate_balance(allocated: float | None, utilized: float | None) -> float:
    return float(allocated or 0) - float(utilized or 0)


def calculate_utilization_rate(allocated: float | None, utilized: float | None) -> float:
    """Percent of the allocation already used. Zero when nothing is allocated."""
    allocated = float(allocated or 0)
    if allocated <= 0:
        return 0.0
    return float(utilized or 0) / allocated * 100


def apply_financials(record, allocated_field: str, utilized_field: str) -> None:
    """Refresh the derived balance and utilization_rate columns in place"""
    allocated = getattr(record, allocated_field)
    utilized = getattr(record, utilized_field)
    record.balance = calculate_balance(allocated, utilized)
    record.utilization_rate = calculate_utilization_rate(allocated, utilized)
