"""Tests for the balance engine and debt simplification."""

import random
from datetime import datetime
from unittest.mock import patch

import pytest

from fundsplit.exceptions import UnbalancedLedgerError
from fundsplit.ledger import balances as balances_module
from fundsplit.ledger.allocation import allocate_even, allocate_percentage
from fundsplit.ledger.balances import (
    balances_as_records,
    compute_balances,
    resolve_member,
    simplify_debts,
)
from fundsplit.models import KnownMember, Member, Split, Transaction, UnknownMember

MEMBERS = ["alice", "bob", "chi"]


def make_transaction(id: str, payer: str, splits: list[Split], total: int = 0) -> Transaction:
    """Create a Transaction for testing."""
    return Transaction(
        id=id,
        fund_id="fund1",
        description=f"Test transaction {id}",
        total_amount=total or max(s.amount for s in splits),
        paid_by=payer,
        splits=splits,
        created_at=datetime(2025, 1, 15, 12, 0, 0),
    )


@pytest.fixture
def history():
    """A mixed sequence of valid transactions."""
    return [
        make_transaction("t1", "alice", allocate_even(100_000, "alice", MEMBERS)),
        make_transaction("t2", "bob", allocate_even(45_000, "bob", ["bob", "chi"])),
        make_transaction(
            "t3",
            "chi",
            allocate_percentage(250_000, "chi", {"alice": 50, "bob": 30, "chi": 20}),
        ),
        make_transaction(
            "t4",
            "bob",
            [Split(member_id="alice", amount=-20_000), Split(member_id="bob", amount=20_000)],
        ),
    ]


class TestComputeBalances:
    """Tests for compute_balances."""

    def test_no_transactions_gives_zero_for_every_member(self):
        """Every roster member is present even without transactions."""
        assert compute_balances([], MEMBERS) == {"alice": 0, "bob": 0, "chi": 0}

    def test_single_even_split(self):
        """Payer is owed what the others consumed."""
        tx = make_transaction("t1", "alice", allocate_even(90_000, "alice", MEMBERS))

        assert compute_balances([tx], MEMBERS) == {
            "alice": 60_000,
            "bob": -30_000,
            "chi": -30_000,
        }

    def test_balances_are_conserved(self, history):
        """Balances always sum to zero for zero-sum transactions."""
        balances = compute_balances(history, MEMBERS)
        assert sum(balances.values()) == 0

    def test_order_independent(self, history):
        """Shuffling the transactions does not change any balance."""
        expected = compute_balances(history, MEMBERS)

        rng = random.Random(42)
        for _ in range(20):
            shuffled = list(history)
            rng.shuffle(shuffled)
            assert compute_balances(shuffled, MEMBERS) == expected

    def test_does_not_mutate_input(self, history):
        """Transactions are left untouched by the fold."""
        before = [tx.model_dump() for tx in history]
        compute_balances(history, MEMBERS)
        assert [tx.model_dump() for tx in history] == before

    def test_one_fold_step_per_split(self, history):
        """The fold visits each split once, whatever the roster size."""
        roster = MEMBERS + [f"extra{i}" for i in range(500)]
        total_splits = sum(len(tx.splits) for tx in history)

        with patch(
            "fundsplit.ledger.balances._apply_split", wraps=balances_module._apply_split
        ) as step:
            balances = compute_balances(iter(history), roster)

        assert step.call_count == total_splits
        assert balances == {**dict.fromkeys(roster, 0), **compute_balances(history, MEMBERS)}

    def test_repeated_calls_return_fresh_dicts(self, history):
        first = compute_balances(history, MEMBERS)
        first["alice"] += 1
        assert compute_balances(history, MEMBERS)["alice"] == first["alice"] - 1

    def test_member_outside_roster_kept_as_extra_key(self):
        """Splits for removed members still count towards balances."""
        tx = make_transaction(
            "t1",
            "alice",
            [Split(member_id="alice", amount=5_000), Split(member_id="dan", amount=-5_000)],
        )

        balances = compute_balances([tx], MEMBERS)

        assert balances["dan"] == -5_000
        assert balances["bob"] == 0
        assert sum(balances.values()) == 0


class TestBalanceRecords:
    """Tests for balances_as_records."""

    def test_sorted_highest_first_then_by_id(self):
        records = balances_as_records({"chi": -100, "bob": 50, "alice": 50})
        assert [(r.member_id, r.amount) for r in records] == [
            ("alice", 50),
            ("bob", 50),
            ("chi", -100),
        ]


class TestSimplifyDebts:
    """Tests for the greedy settlement algorithm."""

    def test_one_creditor_two_debtors(self):
        """Two transfers settle one creditor and two debtors."""
        transfers = simplify_debts({"A": 300, "B": -100, "C": -200})

        assert [(t.from_member, t.to_member, t.amount) for t in transfers] == [
            ("C", "A", 200),
            ("B", "A", 100),
        ]

    def test_no_zero_amount_transfers(self):
        """Every transfer moves a positive amount between different members."""
        transfers = simplify_debts({"A": 300, "B": -100, "C": -200})

        for transfer in transfers:
            assert transfer.amount > 0
            assert transfer.from_member != transfer.to_member

    def test_settled_fund_needs_no_transfers(self):
        assert simplify_debts({"A": 0, "B": 0}) == []
        assert simplify_debts({}) == []

    def test_transfers_settle_every_balance(self, history):
        """Applying the transfers brings every balance to zero."""
        balances = compute_balances(history, MEMBERS)
        remaining = dict(balances)

        for transfer in simplify_debts(balances):
            remaining[transfer.from_member] += transfer.amount
            remaining[transfer.to_member] -= transfer.amount

        assert all(amount == 0 for amount in remaining.values())

    def test_at_most_n_minus_one_transfers(self):
        """Greedy pairing needs fewer transfers than nonzero members."""
        balances = {"A": 500, "B": 250, "C": -100, "D": -300, "E": -350}

        transfers = simplify_debts(balances)

        assert len(transfers) <= len(balances) - 1

    def test_ties_broken_by_member_id(self):
        """Equal debts are settled in member id order."""
        transfers = simplify_debts({"z": 200, "b": -100, "a": -100})

        assert [t.from_member for t in transfers] == ["a", "b"]

    def test_unbalanced_ledger_raises(self):
        """Balances that don't net to zero cannot be settled."""
        with pytest.raises(UnbalancedLedgerError) as exc_info:
            simplify_debts({"A": 300, "B": -100})

        assert exc_info.value.residual == 200


class TestResolveMember:
    """Tests for resolve_member."""

    def test_known_member(self):
        directory = {"alice": Member(id="alice", display_name="Alice")}

        resolved = resolve_member("alice", directory)

        assert isinstance(resolved, KnownMember)
        assert resolved.id == "alice"
        assert resolved.label == "Alice"

    def test_unknown_member_is_explicit(self):
        """Missing records are never replaced by a made-up member."""
        resolved = resolve_member("ghost", {})

        assert isinstance(resolved, UnknownMember)
        assert resolved.kind == "unknown"
        assert resolved.id == "ghost"
        assert resolved.label == "<unknown ghost>"
