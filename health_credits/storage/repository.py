"""
Repository pattern for data access.

Handles the account table, the append-only transaction ledger, and the
atomic units that change them together.
"""

from contextlib import contextmanager
from datetime import date, datetime
from typing import Iterator, List, Optional

import sqlite3

from .db import DEFAULT_DB_PATH, get_connection
from .models import Account, TransactionKind, TransactionRecord


_ACCOUNT_COLUMNS = "id, balance, age_years, starting_grant, last_recharge_date, created_at"
_TRANSACTION_COLUMNS = "id, account_id, amount, description, kind, created_at, reference"


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the account and ledger_transaction tables if they don't exist.

    ledger_transaction is an append-only ledger. No UPDATE or DELETE
    operations should ever be performed on it.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.execute("BEGIN")
        conn.execute("""
            CREATE TABLE IF NOT EXISTS account (
                id TEXT PRIMARY KEY,
                balance INTEGER NOT NULL CHECK (balance >= 0),
                age_years INTEGER NOT NULL CHECK (age_years >= 0),
                starting_grant INTEGER NOT NULL CHECK (starting_grant >= 0),
                last_recharge_date TEXT NOT NULL,
                created_at TEXT NOT NULL
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS ledger_transaction (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                account_id TEXT NOT NULL REFERENCES account(id),
                amount INTEGER NOT NULL CHECK (amount != 0),
                description TEXT NOT NULL,
                kind TEXT NOT NULL CHECK (kind IN ('usage', 'recharge', 'topup')),
                created_at TEXT NOT NULL,
                reference TEXT UNIQUE
            )
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_ledger_transaction_account
            ON ledger_transaction (account_id, id)
        """)
        conn.execute("COMMIT")
    except Exception:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        raise
    finally:
        conn.close()


def _row_to_account(row) -> Account:
    return Account(
        id=row[0],
        balance=row[1],
        age_years=row[2],
        starting_grant=row[3],
        last_recharge_date=date.fromisoformat(row[4]),
        created_at=datetime.fromisoformat(row[5])
    )


def _row_to_transaction(row) -> TransactionRecord:
    return TransactionRecord(
        id=row[0],
        account_id=row[1],
        amount=row[2],
        description=row[3],
        kind=TransactionKind(row[4]),
        created_at=datetime.fromisoformat(row[5]),
        reference=row[6]
    )


class LedgerUnit:
    """Reads and writes performed inside one open write transaction.

    Only handed out by AccountRepository.atomic(); everything done through a
    unit is committed together or not at all.
    """

    def __init__(self, conn: sqlite3.Connection, now: datetime):
        self._conn = conn
        self._now = now

    def read_account(self, account_id: str) -> Optional[Account]:
        """Read the account row under the transaction's write lock."""
        row = self._conn.execute(
            f"SELECT {_ACCOUNT_COLUMNS} FROM account WHERE id = ?",
            (account_id,)
        ).fetchone()
        return _row_to_account(row) if row else None

    def insert_account(
        self,
        account_id: str,
        balance: int,
        age_years: int,
        last_recharge_date: date
    ) -> Account:
        """Create an account whose starting grant equals its opening balance."""
        self._conn.execute(
            """
            INSERT INTO account
            (id, balance, age_years, starting_grant, last_recharge_date, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                account_id,
                balance,
                age_years,
                balance,
                last_recharge_date.isoformat(),
                self._now.isoformat()
            )
        )
        return self.read_account(account_id)

    def write_balance(
        self,
        account_id: str,
        balance: int,
        last_recharge_date: Optional[date] = None
    ) -> None:
        """Overwrite the cached balance, and the recharge date when given."""
        if last_recharge_date is None:
            self._conn.execute(
                "UPDATE account SET balance = ? WHERE id = ?",
                (balance, account_id)
            )
        else:
            self._conn.execute(
                "UPDATE account SET balance = ?, last_recharge_date = ? WHERE id = ?",
                (balance, last_recharge_date.isoformat(), account_id)
            )

    def append_transaction(
        self,
        account_id: str,
        amount: int,
        description: str,
        kind: TransactionKind,
        reference: Optional[str] = None
    ) -> TransactionRecord:
        """Append one record to the ledger.

        Raises:
            sqlite3.IntegrityError: If reference was already recorded
        """
        cursor = self._conn.execute(
            """
            INSERT INTO ledger_transaction
            (account_id, amount, description, kind, created_at, reference)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (account_id, amount, description, kind.value, self._now.isoformat(), reference)
        )
        return TransactionRecord(
            id=cursor.lastrowid,
            account_id=account_id,
            amount=amount,
            description=description,
            kind=kind,
            created_at=self._now,
            reference=reference
        )

    def sum_amounts(self, account_id: str) -> int:
        """Sum of every transaction amount recorded for an account."""
        row = self._conn.execute(
            "SELECT COALESCE(SUM(amount), 0) FROM ledger_transaction WHERE account_id = ?",
            (account_id,)
        ).fetchone()
        return int(row[0])


class AccountRepository:
    """Repository for accounts and their transaction ledger.

    Each call opens its own connection, so one repository can be shared by
    threads. Writes go through atomic(), which holds SQLite's write lock for
    the whole read-modify-write.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH, timeout: float = 5.0):
        """Initialize the repository with a database path.

        Args:
            db_path: Path to SQLite database file
            timeout: Seconds a connection waits on a locked database
        """
        self.db_path = db_path
        self.timeout = timeout

    def _connect(self) -> sqlite3.Connection:
        return get_connection(self.db_path, timeout=self.timeout)

    @contextmanager
    def atomic(self, now: Optional[datetime] = None) -> Iterator[LedgerUnit]:
        """Open a write transaction and yield a LedgerUnit bound to it.

        The transaction starts with BEGIN IMMEDIATE so the write lock is taken
        before any read. It commits when the block exits normally and rolls
        back on any exception, which is re-raised. The connection is always
        closed.

        Args:
            now: Timestamp stamped on rows written in this unit

        Raises:
            sqlite3.OperationalError: If the write lock cannot be acquired
        """
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield LedgerUnit(conn, now or datetime.now())
                conn.execute("COMMIT")
            except Exception:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
        finally:
            conn.close()

    def get_account(self, account_id: str) -> Optional[Account]:
        """Read an account outside any write transaction."""
        conn = self._connect()
        try:
            row = conn.execute(
                f"SELECT {_ACCOUNT_COLUMNS} FROM account WHERE id = ?",
                (account_id,)
            ).fetchone()
            return _row_to_account(row) if row else None
        finally:
            conn.close()

    def fetch_transactions(
        self,
        account_id: str,
        kind: Optional[TransactionKind] = None,
        limit: int = 100
    ) -> List[TransactionRecord]:
        """Fetch an account's transactions, newest first.

        Args:
            account_id: Owning account
            kind: Optional filter for a single transaction kind
            limit: Maximum number of records to return

        Returns:
            List of transaction records ordered by id (newest first)
        """
        conn = self._connect()
        try:
            query = f"SELECT {_TRANSACTION_COLUMNS} FROM ledger_transaction WHERE account_id = ?"
            params = [account_id]
            if kind is not None:
                query += " AND kind = ?"
                params.append(kind.value)
            query += " ORDER BY id DESC LIMIT ?"
            params.append(limit)

            cursor = conn.execute(query, params)
            return [_row_to_transaction(row) for row in cursor.fetchall()]
        finally:
            conn.close()

