"""SQLite database operations for FundSplit."""

import sqlite3
import uuid
from datetime import datetime
from pathlib import Path

from .exceptions import FundNotFoundError
from .models import Fund, Member, Split, Transaction, TransactionDraft


class Database:
    """SQLite database manager."""

    def __init__(self, db_path: Path):
        """Initialize database connection."""
        self.db_path = db_path
        self.conn = sqlite3.connect(str(db_path))
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA foreign_keys = ON")
        self._init_schema()

    def _init_schema(self):
        """Initialize database schema."""
        cursor = self.conn.cursor()

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS members (
                id TEXT PRIMARY KEY,
                display_name TEXT NOT NULL,
                email TEXT NOT NULL DEFAULT ''
            )
        """
        )

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS funds (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                description TEXT NOT NULL DEFAULT '',
                icon TEXT NOT NULL DEFAULT '',
                created_by TEXT NOT NULL,
                currency TEXT NOT NULL DEFAULT 'VND',
                is_archived INTEGER NOT NULL DEFAULT 0,
                created_at TIMESTAMP NOT NULL,
                updated_at TIMESTAMP
            )
        """
        )

        # Membership keeps insertion order via position
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS fund_members (
                fund_id TEXT NOT NULL REFERENCES funds(id) ON DELETE CASCADE,
                member_id TEXT NOT NULL,
                position INTEGER NOT NULL,
                PRIMARY KEY (fund_id, member_id)
            )
        """
        )

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS transactions (
                id TEXT PRIMARY KEY,
                fund_id TEXT NOT NULL REFERENCES funds(id) ON DELETE CASCADE,
                description TEXT NOT NULL,
                total_amount INTEGER NOT NULL,
                paid_by TEXT NOT NULL,
                currency TEXT NOT NULL DEFAULT 'VND',
                date TIMESTAMP,
                category TEXT,
                notes TEXT,
                created_at TIMESTAMP NOT NULL
            )
        """
        )

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS splits (
                transaction_id TEXT NOT NULL
                    REFERENCES transactions(id) ON DELETE CASCADE,
                member_id TEXT NOT NULL,
                amount INTEGER NOT NULL,
                position INTEGER NOT NULL
            )
        """
        )

        # Config table
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS config (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """
        )

        self.conn.commit()

    def close(self):
        """Close database connection."""
        self.conn.close()

    # ========================================================================
    # Config operations
    # ========================================================================

    def get_config(self, key: str) -> str | None:
        """Get a config value by key."""
        cursor = self.conn.cursor()
        cursor.execute("SELECT value FROM config WHERE key = ?", (key,))
        row = cursor.fetchone()
        return str(row["value"]) if row else None

    def set_config(self, key: str, value: str):
        """Set a config value."""
        cursor = self.conn.cursor()
        cursor.execute(
            """
            INSERT INTO config (key, value, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
                value = excluded.value,
                updated_at = excluded.updated_at
            """,
            (key, value, datetime.now().isoformat()),
        )
        self.conn.commit()

    def get_active_fund_id(self) -> str | None:
        """Get the fund used when a command doesn't name one."""
        return self.get_config("active_fund_id")

    def set_active_fund_id(self, fund_id: str):
        """Set the fund used when a command doesn't name one."""
        self.set_config("active_fund_id", fund_id)

    # ========================================================================
    # Member operations
    # ========================================================================

    def save_member(self, member: Member):
        """Insert or update a member record."""
        cursor = self.conn.cursor()
        cursor.execute(
            """
            INSERT INTO members (id, display_name, email)
            VALUES (?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                display_name = excluded.display_name,
                email = excluded.email
            """,
            (member.id, member.display_name, member.email),
        )
        self.conn.commit()

    def get_member(self, member_id: str) -> Member | None:
        """Get a member by id."""
        cursor = self.conn.cursor()
        cursor.execute(
            "SELECT id, display_name, email FROM members WHERE id = ?", (member_id,)
        )
        row = cursor.fetchone()
        if not row:
            return None
        return Member(id=row["id"], display_name=row["display_name"], email=row["email"])

    def get_all_members(self) -> list[Member]:
        """Get all member records."""
        cursor = self.conn.cursor()
        cursor.execute("SELECT id, display_name, email FROM members ORDER BY id")
        return [
            Member(id=row["id"], display_name=row["display_name"], email=row["email"])
            for row in cursor.fetchall()
        ]

    # ========================================================================
    # Fund operations
    # ========================================================================

    def save_fund(self, fund: Fund):
        """Insert or update a fund and replace its member list."""
        cursor = self.conn.cursor()
        cursor.execute(
            """
            INSERT INTO funds (
                id, name, description, icon, created_by, currency,
                is_archived, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                name = excluded.name,
                description = excluded.description,
                icon = excluded.icon,
                currency = excluded.currency,
                is_archived = excluded.is_archived,
                updated_at = excluded.updated_at
            """,
            (
                fund.id,
                fund.name,
                fund.description,
                fund.icon,
                fund.created_by,
                fund.currency,
                int(fund.is_archived),
                fund.created_at.isoformat(),
                fund.updated_at.isoformat() if fund.updated_at else None,
            ),
        )
        cursor.execute("DELETE FROM fund_members WHERE fund_id = ?", (fund.id,))
        cursor.executemany(
            "INSERT INTO fund_members (fund_id, member_id, position) VALUES (?, ?, ?)",
            [(fund.id, member_id, pos) for pos, member_id in enumerate(fund.members)],
        )
        self.conn.commit()

    def get_fund(self, fund_id: str) -> Fund | None:
        """Get a fund by id, including its member list."""
        cursor = self.conn.cursor()
        cursor.execute(
            """
            SELECT id, name, description, icon, created_by, currency,
                   is_archived, created_at, updated_at
            FROM funds
            WHERE id = ?
            """,
            (fund_id,),
        )
        row = cursor.fetchone()
        if not row:
            return None
        return self._row_to_fund(row)

    def require_fund(self, fund_id: str) -> Fund:
        """Get a fund by id or raise FundNotFoundError."""
        fund = self.get_fund(fund_id)
        if fund is None:
            raise FundNotFoundError(fund_id)
        return fund

    def get_all_funds(self, include_archived: bool = False) -> list[Fund]:
        """Get all funds, newest first."""
        cursor = self.conn.cursor()
        query = """
            SELECT id, name, description, icon, created_by, currency,
                   is_archived, created_at, updated_at
            FROM funds
        """
        if not include_archived:
            query += " WHERE is_archived = 0"
        query += " ORDER BY created_at DESC"
        cursor.execute(query)
        return [self._row_to_fund(row) for row in cursor.fetchall()]

    def delete_fund(self, fund_id: str) -> bool:
        """
        Delete a fund with its membership, transactions and splits.

        Clears the active fund if it pointed here. Returns False if the fund
        did not exist.
        """
        cursor = self.conn.cursor()
        # fund_members, transactions and splits go with it via ON DELETE CASCADE
        cursor.execute("DELETE FROM funds WHERE id = ?", (fund_id,))
        deleted = cursor.rowcount > 0
        cursor.execute(
            "DELETE FROM config WHERE key = 'active_fund_id' AND value = ?", (fund_id,)
        )
        self.conn.commit()
        return deleted

    def _get_fund_member_ids(self, fund_id: str) -> list[str]:
        cursor = self.conn.cursor()
        cursor.execute(
            "SELECT member_id FROM fund_members WHERE fund_id = ? ORDER BY position",
            (fund_id,),
        )
        return [row["member_id"] for row in cursor.fetchall()]

    def _row_to_fund(self, row: sqlite3.Row) -> Fund:
        return Fund(
            id=row["id"],
            name=row["name"],
            description=row["description"],
            icon=row["icon"],
            members=self._get_fund_member_ids(row["id"]),
            created_by=row["created_by"],
            currency=row["currency"],
            is_archived=bool(row["is_archived"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=(
                datetime.fromisoformat(row["updated_at"]) if row["updated_at"] else None
            ),
        )

    # ========================================================================
    # Transaction operations
    # ========================================================================

    def append_transaction(self, draft: TransactionDraft) -> Transaction:
        """Persist a transaction, assigning its id and created_at."""
        transaction = Transaction(
            **draft.model_dump(),
            id=uuid.uuid4().hex,
            created_at=datetime.now(),
        )

        cursor = self.conn.cursor()
        cursor.execute(
            """
            INSERT INTO transactions (
                id, fund_id, description, total_amount, paid_by, currency,
                date, category, notes, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                transaction.id,
                transaction.fund_id,
                transaction.description,
                transaction.total_amount,
                transaction.paid_by,
                transaction.currency,
                transaction.date.isoformat() if transaction.date else None,
                transaction.category,
                transaction.notes,
                transaction.created_at.isoformat(),
            ),
        )
        cursor.executemany(
            """
            INSERT INTO splits (transaction_id, member_id, amount, position)
            VALUES (?, ?, ?, ?)
            """,
            [
                (transaction.id, split.member_id, split.amount, pos)
                for pos, split in enumerate(transaction.splits)
            ],
        )
        self.conn.commit()
        return transaction

    def list_transactions(self, fund_id: str) -> list[Transaction]:
        """Get all transactions of a fund, oldest first."""
        cursor = self.conn.cursor()
        cursor.execute(
            """
            SELECT id, fund_id, description, total_amount, paid_by, currency,
                   date, category, notes, created_at
            FROM transactions
            WHERE fund_id = ?
            ORDER BY created_at, rowid
            """,
            (fund_id,),
        )
        rows = cursor.fetchall()

        splits_by_tx: dict[str, list[Split]] = {row["id"]: [] for row in rows}
        cursor.execute(
            """
            SELECT s.transaction_id, s.member_id, s.amount
            FROM splits s
            JOIN transactions t ON t.id = s.transaction_id
            WHERE t.fund_id = ?
            ORDER BY s.transaction_id, s.position
            """,
            (fund_id,),
        )
        for split_row in cursor.fetchall():
            splits_by_tx[split_row["transaction_id"]].append(
                Split(member_id=split_row["member_id"], amount=split_row["amount"])
            )

        return [
            Transaction(
                id=row["id"],
                fund_id=row["fund_id"],
                description=row["description"],
                total_amount=row["total_amount"],
                paid_by=row["paid_by"],
                currency=row["currency"],
                date=datetime.fromisoformat(row["date"]) if row["date"] else None,
                category=row["category"],
                notes=row["notes"],
                created_at=datetime.fromisoformat(row["created_at"]),
                splits=splits_by_tx[row["id"]],
            )
            for row in rows
        ]
