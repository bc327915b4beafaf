"""Validation of transaction input before it is recorded."""

import re
from collections.abc import Iterable
from decimal import Decimal, InvalidOperation

from pydantic import BaseModel

from ..models import MemberId, Split, ValidationIssue

_PLAIN_AMOUNT = re.compile(r"^[+-]?\d+$")
_GROUPED_AMOUNT = re.compile(r"^[+-]?\d{1,3}([.,_ ]\d{3})+$")
_THOUSANDS_AMOUNT = re.compile(r"^[+-]?\d+(\.\d+)?k$")


class ValidationRules(BaseModel):
    """Thresholds for the heuristic checks. Amounts are in minor units."""

    min_description_length: int = 3
    small_amount_threshold: int = 1000
    large_amount_threshold: int = 100_000_000
    split_tolerance: int = 0


def parse_amount(text: str | None) -> int | None:
    """
    Parse a user-entered amount.

    Accepts plain integers ("150000"), grouped thousands ("150.000",
    "150,000") and a thousands suffix ("150k", "1.5k").

    Returns:
        The integer amount, or None if the text is not an integer amount
    """
    if text is None:
        return None
    value = text.strip().lower()

    if _PLAIN_AMOUNT.match(value):
        return int(value)
    if _GROUPED_AMOUNT.match(value):
        return int(re.sub(r"[.,_ ]", "", value))
    if _THOUSANDS_AMOUNT.match(value):
        try:
            amount = Decimal(value[:-1]) * 1000
        except InvalidOperation:
            return None
        return int(amount) if amount == amount.to_integral_value() else None
    return None


def has_errors(issues: Iterable[ValidationIssue]) -> bool:
    """True if any issue blocks submission."""
    return any(issue.severity == "error" for issue in issues)


class TransactionValidator:
    """
    Validates transaction form input.

    Every check runs and all issues are collected, so the caller can show
    every problem at once. Validation never raises; an ``error`` issue blocks
    submission, a ``warning`` is advisory only. The validator holds no state
    besides its rules, so it is safe to call on every keystroke.
    """

    def __init__(self, rules: ValidationRules | None = None):
        """Initialize the validator with thresholds (defaults if omitted)."""
        self.rules = rules or ValidationRules()

    def validate_description(self, description: str | None) -> list[ValidationIssue]:
        """Blank is an error; very short is a warning."""
        issues: list[ValidationIssue] = []

        if not description or not description.strip():
            issues.append(
                ValidationIssue(
                    field="description",
                    message="Please enter a description",
                    severity="error",
                )
            )
        elif len(description.strip()) < self.rules.min_description_length:
            issues.append(
                ValidationIssue(
                    field="description",
                    message=(
                        f"Description is very short, use at least "
                        f"{self.rules.min_description_length} characters"
                    ),
                    severity="warning",
                )
            )

        return issues

    def validate_amount(self, amount: str | None) -> list[ValidationIssue]:
        """
        Check the total amount.

        Non-positive or unparsable amounts are errors. Amounts below or above
        the typo thresholds are warnings (a missing or extra zero).
        """
        issues: list[ValidationIssue] = []

        if not amount or not amount.strip():
            issues.append(
                ValidationIssue(
                    field="amount", message="Please enter an amount", severity="error"
                )
            )
            return issues

        value = parse_amount(amount)

        if value is None:
            issues.append(
                ValidationIssue(
                    field="amount",
                    message=f"'{amount}' is not a valid amount",
                    severity="error",
                )
            )
        elif value <= 0:
            issues.append(
                ValidationIssue(
                    field="amount",
                    message="Amount must be greater than 0",
                    severity="error",
                )
            )
        elif value < self.rules.small_amount_threshold:
            issues.append(
                ValidationIssue(
                    field="amount",
                    message="Amount is very small, are you missing a zero?",
                    severity="warning",
                )
            )
        elif value > self.rules.large_amount_threshold:
            issues.append(
                ValidationIssue(
                    field="amount",
                    message="Amount is very large, please double-check it",
                    severity="warning",
                )
            )

        return issues

    def validate_splits(
        self, splits: list[Split] | None, members: Iterable[MemberId] | None = None
    ) -> list[ValidationIssue]:
        """
        Check that the splits allocate something and net to zero.

        Args:
            splits: The candidate splits
            members: Optional fund roster; splits for other ids are errors
        """
        issues: list[ValidationIssue] = []

        if not splits:
            issues.append(
                ValidationIssue(
                    field="splits",
                    message="No split information provided",
                    severity="error",
                )
            )
            return issues

        if all(split.amount == 0 for split in splits):
            issues.append(
                ValidationIssue(
                    field="splits",
                    message="Please divide the amount between members",
                    severity="error",
                )
            )

        residual = sum(split.amount for split in splits)
        if abs(residual) > self.rules.split_tolerance:
            issues.append(
                ValidationIssue(
                    field="splits",
                    message=(
                        f"Splits do not balance, off by {residual}. "
                        f"Please adjust the amounts"
                    ),
                    severity="error",
                )
            )

        if members is not None:
            roster = set(members)
            for split in splits:
                if split.member_id not in roster:
                    issues.append(
                        ValidationIssue(
                            field="splits",
                            message=f"Split references unknown member '{split.member_id}'",
                            severity="error",
                        )
                    )

        return issues

    def validate_form(
        self,
        description: str | None,
        amount: str | None,
        splits: list[Split] | None,
        members: Iterable[MemberId] | None = None,
    ) -> list[ValidationIssue]:
        """Run every check and return all issues in field order."""
        return [
            *self.validate_description(description),
            *self.validate_amount(amount),
            *self.validate_splits(splits, members),
        ]
