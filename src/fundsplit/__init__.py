"""FundSplit - Shared expense funds with zero-sum splits and settle-up suggestions."""

__version__ = "0.1.0"

from .config import Settings, load_settings
from .db import Database
from .ledger.allocation import allocate_custom, allocate_even, allocate_percentage
from .ledger.balances import compute_balances, simplify_debts
from .ledger.service import LedgerService
from .ledger.validator import TransactionValidator
from .models import (
    Fund,
    Member,
    Split,
    Transaction,
    TransactionDraft,
    Transfer,
    ValidationIssue,
)

__all__ = [
    "Settings",
    "load_settings",
    "Database",
    "allocate_custom",
    "allocate_even",
    "allocate_percentage",
    "compute_balances",
    "simplify_debts",
    "LedgerService",
    "TransactionValidator",
    "Fund",
    "Member",
    "Split",
    "Transaction",
    "TransactionDraft",
    "Transfer",
    "ValidationIssue",
]
