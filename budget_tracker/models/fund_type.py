from __future__ import annotations
from enum import Enum


class FundType(str, Enum):
    PROJECT = "project"
    TRUST_FUND = "trust_fund"
    TWENTY_PERCENT_DF = "twenty_percent_df"
    SPECIAL_EDUCATION_FUND = "special_education_fund"
    SPECIAL_HEALTH_FUND = "special_health_fund"


class BreakdownStatus(str, Enum):
    ONGOING = "ongoing"
    COMPLETED = "completed"
    DELAYED = "delayed"


class ReceivedFundStatus(str, Enum):
    """Statuses used by trust, special education and special health funds"""
    ACTIVE = "active"
    NOT_AVAILABLE = "not_available"
    NOT_YET_STARTED = "not_yet_started"
    ON_PROCESS = "on_process"
    ONGOING = "ongoing"
    COMPLETED = "completed"
