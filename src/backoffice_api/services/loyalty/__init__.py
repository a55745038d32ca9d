"""Loyalty service exports."""

from .ledger import (  # noqa: F401
    AccountTotals,
    ActivationResult,
    AdjustmentResult,
    AwardResult,
    DeletionResult,
    ExpirationResult,
    HistoryNotFoundError,
    InsufficientPointsError,
    InvalidAdjustmentError,
    LoyaltyDisabledError,
    LoyaltyError,
    LoyaltyLedgerService,
    ReconciliationResult,
    RedemptionBelowMinimumError,
    RedemptionResult,
    calculate_award_points,
    calculate_max_redeemable_points,
    calculate_points_discount,
)
from .summary import LoyaltyBalance, LoyaltySummary, LoyaltySummaryService  # noqa: F401
