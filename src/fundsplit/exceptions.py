"""Custom exceptions for FundSplit."""

from typing import Any


class FundSplitError(Exception):
    """Base exception for all FundSplit errors."""

    pass


class ConfigurationError(FundSplitError):
    """Raised when configuration is invalid or missing."""

    pass


class FundNotFoundError(FundSplitError):
    """Raised when a fund id does not exist in the store."""

    def __init__(self, fund_id: str, message: str | None = None):
        self.fund_id = fund_id
        super().__init__(message or f"Fund '{fund_id}' not found")


class UnknownMemberError(FundSplitError):
    """Raised when a member id is not part of the fund roster."""

    def __init__(self, member_id: str, fund_id: str | None = None):
        self.member_id = member_id
        self.fund_id = fund_id
        where = f" in fund '{fund_id}'" if fund_id else ""
        super().__init__(f"Member '{member_id}' not found{where}")


class AllocationError(FundSplitError):
    """Raised when a split strategy cannot be applied to its inputs."""

    pass


class UnbalancedLedgerError(FundSplitError):
    """Raised when balances do not net to zero and cannot be settled."""

    def __init__(self, residual: int):
        self.residual = residual
        super().__init__(
            f"Balances do not net to zero (residual: {residual}). "
            f"This indicates a transaction that violates the zero-sum rule."
        )


class TransactionRejectedError(FundSplitError):
    """Raised when a transaction has error-severity validation issues."""

    def __init__(self, issues: list[Any]):
        self.issues = issues
        errors = [i for i in issues if i.severity == "error"]
        summary = "; ".join(f"{i.field}: {i.message}" for i in errors)
        super().__init__(f"Transaction rejected ({len(errors)} errors): {summary}")


class TransactionParseError(FundSplitError):
    """Raised when the parser response is not a usable JSON object."""

    pass


class APIError(FundSplitError):
    """Base class for API-related errors."""

    pass


class ParserAPIError(APIError):
    """Raised when the language model request fails."""

    pass


class CurrencyAPIError(APIError):
    """Raised when the currency rate lookup fails."""

    pass
