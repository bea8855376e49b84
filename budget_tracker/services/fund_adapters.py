"""
One adapter per fund type.

The five fund families share the same breakdown and audit behaviour but store
their money under different column names. Services never branch on the fund
type; they look up the adapter in ``FUND_ADAPTERS`` and go through its field
mapping and repositories.
"""
from typing import Any, Iterable
from sqlalchemy.ext.asyncio import AsyncSession

from budget_tracker.core.exceptions import NotFoundError
from budget_tracker.models.fund_type import FundType, BreakdownStatus, ReceivedFundStatus
from budget_tracker.models.fund import (
    Project,
    TrustFund,
    TwentyPercentDF,
    SpecialEducationFund,
    SpecialHealthFund,
)
from budget_tracker.models.breakdown import (
    ProjectBreakdown,
    TrustFundBreakdown,
    TwentyPercentDFBreakdown,
    SpecialEducationFundBreakdown,
    SpecialHealthFundBreakdown,
)
from budget_tracker.models.activity_log import (
    ProjectActivity,
    TrustFundActivity,
    TwentyPercentDFActivity,
    SpecialEducationFundActivity,
    SpecialHealthFundActivity,
)
from budget_tracker.repositories.fund_repository import FundRepository
from budget_tracker.repositories.breakdown_repository import BreakdownRepository
from budget_tracker.repositories.activity_repository import ActivityRepository
from budget_tracker.services.availability import BudgetAvailability, compute_availability

ALLOCATED_FUND_FIELDS = {
    "allocated_field": "total_budget_allocated",
    "utilized_field": "total_budget_utilized",
    "obligated_field": "obligated_budget",
    "office_field": "implementing_office",
    "title_field": "particulars",
    "statuses": tuple(s.value for s in BreakdownStatus),
}

SHARED_FUND_FIELDS = ("status", "remarks", "year")

RECEIVED_FUND_FIELDS = {
    "allocated_field": "received",
    "utilized_field": "utilized",
    "obligated_field": "obligated_pr",
    "office_field": "office_in_charge",
    "title_field": "project_title",
    "statuses": tuple(s.value for s in ReceivedFundStatus),
}


class FundAdapter:
    def __init__(
        self,
        fund_type: FundType,
        label: str,
        fund_model,
        breakdown_model,
        activity_model,
        parent_field: str,
        allocated_field: str,
        utilized_field: str,
        obligated_field: str,
        office_field: str,
        title_field: str,
        statuses: tuple[str, ...],
        supports_auto_calculate: bool = False,
        rolls_up_status: bool = False,
    ):
        self.fund_type = fund_type
        self.label = label
        self.fund_model = fund_model
        self.breakdown_model = breakdown_model
        self.activity_model = activity_model
        self.parent_field = parent_field
        self.allocated_field = allocated_field
        self.utilized_field = utilized_field
        self.obligated_field = obligated_field
        self.office_field = office_field
        self.title_field = title_field
        self.statuses = statuses
        self.supports_auto_calculate = supports_auto_calculate
        self.rolls_up_status = rolls_up_status

    def __repr__(self) -> str:
        return f"FundAdapter({self.fund_type.value})"

    # Repositories

    def fund_repository(self, db: AsyncSession) -> FundRepository:
        return FundRepository(db, self.fund_model)

    def breakdown_repository(self, db: AsyncSession) -> BreakdownRepository:
        return BreakdownRepository(db, self.breakdown_model, self.parent_field)

    def activity_repository(self, db: AsyncSession) -> ActivityRepository:
        return ActivityRepository(db, self.activity_model)

    # Fund access

    async def get_parent(self, db: AsyncSession, fund_id: int, include_deleted: bool = False):
        return await self.fund_repository(db).get_by_id(fund_id, include_deleted=include_deleted)

    async def require_parent(self, db: AsyncSession, fund_id: int, include_deleted: bool = False):
        fund = await self.get_parent(db, fund_id, include_deleted=include_deleted)
        if fund is None:
            raise NotFoundError(self.label, fund_id)
        return fund

    async def list_active_children(self, db: AsyncSession, parent_id: int, **filters) -> list:
        return await self.breakdown_repository(db).list_by_parent(parent_id, **filters)

    def create_child(self, payload: dict[str, Any]):
        """Build an unsaved breakdown row; ``parent_id`` maps to this type's FK column"""
        values = dict(payload)
        parent_id = values.pop("parent_id", None)
        values[self.parent_field] = parent_id
        return self.breakdown_model(**values)

    def resolve_parent_id(self, breakdown) -> int | None:
        return getattr(breakdown, self.parent_field)

    # Field mapping

    def parent_total(self, fund) -> float:
        return float(getattr(fund, self.allocated_field) or 0)

    def allocated(self, fund) -> float:
        return float(getattr(fund, self.allocated_field) or 0)

    def utilized(self, fund) -> float:
        return float(getattr(fund, self.utilized_field) or 0)

    def obligated(self, fund) -> float:
        return float(getattr(fund, self.obligated_field) or 0)

    def office(self, fund) -> str | None:
        return getattr(fund, self.office_field)

    def title(self, fund) -> str | None:
        return getattr(fund, self.title_field)

    def fund_columns(self, data: dict[str, Any]) -> dict[str, Any]:
        """Translate generic fund fields (title, office, allocated...) to this type's columns"""
        mapping = {
            "title": self.title_field,
            "office": self.office_field,
            "allocated": self.allocated_field,
            "utilized": self.utilized_field,
            "obligated": self.obligated_field,
        }
        columns = {}
        for key, value in data.items():
            if key in mapping:
                columns[mapping[key]] = value
            elif key in SHARED_FUND_FIELDS:
                columns[key] = value
            elif key == "date_received" and hasattr(self.fund_model, "date_received"):
                columns[key] = value
        return columns

    def describe(self, fund) -> dict[str, Any]:
        """Generic view of a fund row used by the HTTP layer"""
        return {
            "id": fund.id,
            "fund_type": self.fund_type.value,
            "title": self.title(fund),
            "office": self.office(fund),
            "allocated": self.allocated(fund),
            "utilized": self.utilized(fund),
            "obligated": self.obligated(fund),
            "balance": float(fund.balance or 0),
            "utilization_rate": float(fund.utilization_rate or 0),
            "status": fund.status,
            "remarks": fund.remarks,
            "year": fund.year,
            "date_received": getattr(fund, "date_received", None),
            "auto_calculate_budget_utilized": (
                bool(fund.auto_calculate_budget_utilized) if self.supports_auto_calculate else False
            ),
            "projects_completed": getattr(fund, "projects_completed", None),
            "projects_delayed": getattr(fund, "projects_delayed", None),
            "projects_ongoing": getattr(fund, "projects_ongoing", None),
            "is_pinned": bool(fund.is_pinned),
            "pinned_at": fund.pinned_at,
            "is_deleted": bool(fund.is_deleted),
            "deleted_at": fund.deleted_at,
            "deletion_reason": fund.deletion_reason,
            "created_at": fund.created_at,
            "created_by_id": fund.created_by_id,
            "updated_at": fund.updated_at,
        }

    def is_auto_calculated(self, fund) -> bool:
        return self.supports_auto_calculate and bool(fund.auto_calculate_budget_utilized)

    def compute_availability(
        self,
        parent,
        siblings: Iterable[Any] | None,
        exclude_id: int | None = None,
        candidate_amount: float = 0.0,
    ) -> BudgetAvailability:
        parent_total = self.parent_total(parent) if parent is not None else None
        return compute_availability(parent_total, siblings, exclude_id, candidate_amount)


FUND_ADAPTERS: dict[FundType, FundAdapter] = {
    FundType.PROJECT: FundAdapter(
        FundType.PROJECT,
        "Project",
        Project,
        ProjectBreakdown,
        ProjectActivity,
        parent_field="project_id",
        supports_auto_calculate=True,
        rolls_up_status=True,
        **ALLOCATED_FUND_FIELDS,
    ),
    FundType.TWENTY_PERCENT_DF: FundAdapter(
        FundType.TWENTY_PERCENT_DF,
        "Twenty Percent DF",
        TwentyPercentDF,
        TwentyPercentDFBreakdown,
        TwentyPercentDFActivity,
        parent_field="twenty_percent_df_id",
        supports_auto_calculate=True,
        **ALLOCATED_FUND_FIELDS,
    ),
    FundType.TRUST_FUND: FundAdapter(
        FundType.TRUST_FUND,
        "Trust Fund",
        TrustFund,
        TrustFundBreakdown,
        TrustFundActivity,
        parent_field="trust_fund_id",
        **RECEIVED_FUND_FIELDS,
    ),
    FundType.SPECIAL_EDUCATION_FUND: FundAdapter(
        FundType.SPECIAL_EDUCATION_FUND,
        "Special Education Fund",
        SpecialEducationFund,
        SpecialEducationFundBreakdown,
        SpecialEducationFundActivity,
        parent_field="special_education_fund_id",
        **RECEIVED_FUND_FIELDS,
    ),
    FundType.SPECIAL_HEALTH_FUND: FundAdapter(
        FundType.SPECIAL_HEALTH_FUND,
        "Special Health Fund",
        SpecialHealthFund,
        SpecialHealthFundBreakdown,
        SpecialHealthFundActivity,
        parent_field="special_health_fund_id",
        **RECEIVED_FUND_FIELDS,
    ),
}


def get_adapter(fund_type: FundType | str) -> FundAdapter:
    return FUND_ADAPTERS[FundType(fund_type)]
