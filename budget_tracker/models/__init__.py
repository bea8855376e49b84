# Import all models to ensure they are registered with SQLAlchemy
# Department must be registered before User since User references it
from budget_tracker.models.department import Department
from budget_tracker.models.user import User, UserRole
from budget_tracker.models.implementing_agency import ImplementingAgency
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
    ActivityAction,
    ActivitySource,
    EntityKind,
    ProjectActivity,
    TrustFundActivity,
    TwentyPercentDFActivity,
    SpecialEducationFundActivity,
    SpecialHealthFundActivity,
    ACTIVITY_MODELS,
)

__all__ = [
    "Department",
    "User",
    "UserRole",
    "ImplementingAgency",
    "FundType",
    "BreakdownStatus",
    "ReceivedFundStatus",
    "Project",
    "TrustFund",
    "TwentyPercentDF",
    "SpecialEducationFund",
    "SpecialHealthFund",
    "ProjectBreakdown",
    "TrustFundBreakdown",
    "TwentyPercentDFBreakdown",
    "SpecialEducationFundBreakdown",
    "SpecialHealthFundBreakdown",
    "ActivityAction",
    "ActivitySource",
    "EntityKind",
    "ProjectActivity",
    "TrustFundActivity",
    "TwentyPercentDFActivity",
    "SpecialEducationFundActivity",
    "SpecialHealthFundActivity",
    "ACTIVITY_MODELS",
]
