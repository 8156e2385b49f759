from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, List, Optional

from domain.errors import DuplicateIdentityError, InsufficientFundsError, StorageError
from domain.models import (
    Deposit,
    DepositStatus,
    User,
    UserStatus,
    Withdraw,
    WithdrawStatus,
)
from domain.repositories import LedgerRepository

logger = logging.getLogger(__name__)

_USER_COLUMNS = (
    "uid, username, balance, referral_balance, referred_by, status, "
    "registration_date, last_check_in"
)
_DEPOSIT_COLUMNS = "id, uid, amount, date, status, is_reactivation"
_WITHDRAW_COLUMNS = "id, uid, amount, upi_id, name, date, status"


def _to_text(value: Optional[datetime]) -> Optional[str]:
    # Fixed-width ISO strings keep lexical order equal to time order.
    if value is None:
        return None
    return value.isoformat(timespec="microseconds")


def _from_text(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromisoformat(value)


class SqliteLedgerRepository(LedgerRepository):
    """
    SQLite-backed implementation of `LedgerRepository`.

    This repository owns the `users`, `deposits` and `withdraws` tables and
    maps rows to the domain models. It is self-initialising: the tables are
    created if needed. Multi-step mutations run inside one transaction on a
    single connection.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        self._ensure_tables()

    def _get_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, timeout=10)
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Cursor]:
        """
        Yield a cursor whose work is committed on success and rolled back on
        any exception. Driver errors are re-raised as `StorageError`.
        """

        try:
            conn = self._get_connection()
        except sqlite3.Error as exc:
            raise StorageError(str(exc)) from exc
        try:
            with conn:
                yield conn.cursor()
        except sqlite3.IntegrityError as exc:
            if "UNIQUE" in str(exc) and "users." in str(exc):
                raise DuplicateIdentityError(str(exc)) from exc
            raise StorageError(str(exc)) from exc
        except sqlite3.Error as exc:
            raise StorageError(str(exc)) from exc
        finally:
            conn.close()

    def _ensure_tables(self) -> None:
        with self._transaction() as cur:
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS users (
                    uid INTEGER PRIMARY KEY,
                    username TEXT NOT NULL UNIQUE,
                    balance INTEGER NOT NULL DEFAULT 0 CHECK (balance >= 0),
                    referral_balance INTEGER NOT NULL DEFAULT 0 CHECK (referral_balance >= 0),
                    referred_by INTEGER,
                    status TEXT NOT NULL DEFAULT 'inactive',
                    registration_date TEXT NOT NULL,
                    last_check_in TEXT
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS deposits (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    uid INTEGER NOT NULL REFERENCES users (uid),
                    amount INTEGER NOT NULL,
                    date TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending',
                    is_reactivation INTEGER NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS withdraws (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    uid INTEGER NOT NULL REFERENCES users (uid),
                    amount INTEGER NOT NULL,
                    upi_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    date TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending'
                )
                """
            )
            cur.execute("CREATE INDEX IF NOT EXISTS deposits_uid_date ON deposits (uid, date)")
            cur.execute("CREATE INDEX IF NOT EXISTS withdraws_uid_date ON withdraws (uid, date)")

    @staticmethod
    def _user_to_domain(row: tuple) -> User:
        return User(
            uid=int(row[0]),
            username=row[1],
            balance=int(row[2]),
            referral_balance=int(row[3]),
            referred_by=int(row[4]) if row[4] is not None else None,
            status=UserStatus(row[5]),
            registration_date=_from_text(row[6]),
            last_check_in=_from_text(row[7]),
        )

    @staticmethod
    def _deposit_to_domain(row: tuple) -> Deposit:
        return Deposit(
            id=int(row[0]),
            uid=int(row[1]),
            amount=int(row[2]),
            date=_from_text(row[3]),
            status=DepositStatus(row[4]),
            is_reactivation=bool(row[5]),
        )

    @staticmethod
    def _withdraw_to_domain(row: tuple) -> Withdraw:
        return Withdraw(
            id=int(row[0]),
            uid=int(row[1]),
            amount=int(row[2]),
            upi_id=row[3],
            name=row[4],
            date=_from_text(row[5]),
            status=WithdrawStatus(row[6]),
        )

    # Users

    def find_user_by_id(self, uid: int) -> Optional[User]:
        with self._transaction() as cur:
            cur.execute(f"SELECT {_USER_COLUMNS} FROM users WHERE uid = ?", (uid,))
            row = cur.fetchone()
            if not row:
                return None
            return self._user_to_domain(row)

    def find_user_by_username(self, username: str) -> Optional[User]:
        with self._transaction() as cur:
            cur.execute(f"SELECT {_USER_COLUMNS} FROM users WHERE username = ?", (username,))
            row = cur.fetchone()
            if not row:
                return None
            return self._user_to_domain(row)

    def count_users(self) -> int:
        with self._transaction() as cur:
            cur.execute("SELECT COUNT(*) FROM users")
            return int(cur.fetchone()[0])

    def count_referrals(self, uid: int) -> int:
        with self._transaction() as cur:
            cur.execute("SELECT COUNT(*) FROM users WHERE referred_by = ?", (uid,))
            return int(cur.fetchone()[0])

    def create_user(self, user: User) -> None:
        with self._transaction() as cur:
            cur.execute(
                f"""
                INSERT INTO users ({_USER_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    user.uid,
                    user.username,
                    user.balance,
                    user.referral_balance,
                    user.referred_by,
                    user.status.value,
                    _to_text(user.registration_date),
                    _to_text(user.last_check_in),
                ),
            )

    def save_user(self, user: User) -> None:
        # uid, username and referred_by are immutable after registration.
        with self._transaction() as cur:
            cur.execute(
                """
                UPDATE users
                SET balance = ?, referral_balance = ?, status = ?, last_check_in = ?
                WHERE uid = ?
                """,
                (
                    user.balance,
                    user.referral_balance,
                    user.status.value,
                    _to_text(user.last_check_in),
                    user.uid,
                ),
            )

    # Deposits

    def count_deposits(self, uid: int) -> int:
        with self._transaction() as cur:
            cur.execute("SELECT COUNT(*) FROM deposits WHERE uid = ?", (uid,))
            return int(cur.fetchone()[0])

    def find_oldest_deposit(self, uid: int) -> Optional[Deposit]:
        with self._transaction() as cur:
            cur.execute(
                f"""
                SELECT {_DEPOSIT_COLUMNS} FROM deposits
                WHERE uid = ?
                ORDER BY date ASC, id ASC
                LIMIT 1
                """,
                (uid,),
            )
            row = cur.fetchone()
            if not row:
                return None
            return self._deposit_to_domain(row)

    def delete_deposit(self, deposit_id: int) -> None:
        with self._transaction() as cur:
            cur.execute("DELETE FROM deposits WHERE id = ?", (deposit_id,))

    @staticmethod
    def _insert_deposit(cur: sqlite3.Cursor, deposit: Deposit) -> Deposit:
        cur.execute(
            """
            INSERT INTO deposits (uid, amount, date, status, is_reactivation)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                deposit.uid,
                deposit.amount,
                _to_text(deposit.date),
                deposit.status.value,
                int(deposit.is_reactivation),
            ),
        )
        deposit.id = cur.lastrowid
        return deposit

    def create_deposit(self, deposit: Deposit) -> Deposit:
        with self._transaction() as cur:
            return self._insert_deposit(cur, deposit)

    def find_deposits_by_user(self, uid: int) -> List[Deposit]:
        with self._transaction() as cur:
            cur.execute(
                f"SELECT {_DEPOSIT_COLUMNS} FROM deposits WHERE uid = ? ORDER BY date ASC, id ASC",
                (uid,),
            )
            return [self._deposit_to_domain(row) for row in cur.fetchall()]

    def add_deposit(self, deposit: Deposit, retain: int) -> Deposit:
        with self._transaction() as cur:
            self._insert_deposit(cur, deposit)
            cur.execute(
                """
                DELETE FROM deposits
                WHERE uid = ? AND id NOT IN (
                    SELECT id FROM deposits
                    WHERE uid = ?
                    ORDER BY date DESC, id DESC
                    LIMIT ?
                )
                """,
                (deposit.uid, deposit.uid, retain),
            )
            if cur.rowcount > 0:
                logger.debug("Evicted %s old deposit(s) of user %s", cur.rowcount, deposit.uid)
            return deposit

    # Withdrawals

    def find_withdraws_by_user_in_range(
        self,
        uid: int,
        start: datetime,
        end: datetime,
    ) -> List[Withdraw]:
        with self._transaction() as cur:
            cur.execute(
                f"""
                SELECT {_WITHDRAW_COLUMNS} FROM withdraws
                WHERE uid = ? AND date >= ? AND date < ?
                ORDER BY date ASC, id ASC
                """,
                (uid, _to_text(start), _to_text(end)),
            )
            return [self._withdraw_to_domain(row) for row in cur.fetchall()]

    def find_withdraws_by_user(
        self,
        uid: int,
        sort_desc: bool = True,
        limit: Optional[int] = None,
    ) -> List[Withdraw]:
        order = "DESC" if sort_desc else "ASC"
        query = (
            f"SELECT {_WITHDRAW_COLUMNS} FROM withdraws WHERE uid = ? "
            f"ORDER BY date {order}, id {order}"
        )
        params: tuple = (uid,)
        if limit is not None:
            query += " LIMIT ?"
            params = (uid, limit)
        with self._transaction() as cur:
            cur.execute(query, params)
            return [self._withdraw_to_domain(row) for row in cur.fetchall()]

    @staticmethod
    def _insert_withdraw(cur: sqlite3.Cursor, withdraw: Withdraw) -> Withdraw:
        cur.execute(
            """
            INSERT INTO withdraws (uid, amount, upi_id, name, date, status)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                withdraw.uid,
                withdraw.amount,
                withdraw.upi_id,
                withdraw.name,
                _to_text(withdraw.date),
                withdraw.status.value,
            ),
        )
        withdraw.id = cur.lastrowid
        return withdraw

    def create_withdraw(self, withdraw: Withdraw) -> Withdraw:
        with self._transaction() as cur:
            return self._insert_withdraw(cur, withdraw)

    def record_withdrawal(self, withdraw: Withdraw) -> User:
        with self._transaction() as cur:
            cur.execute(
                """
                UPDATE users
                SET balance = balance - ?
                WHERE uid = ? AND balance >= ?
                """,
                (withdraw.amount, withdraw.uid, withdraw.amount),
            )
            if cur.rowcount != 1:
                raise InsufficientFundsError(
                    f"User {withdraw.uid} cannot be debited {withdraw.amount}"
                )
            self._insert_withdraw(cur, withdraw)
            cur.execute(f"SELECT {_USER_COLUMNS} FROM users WHERE uid = ?", (withdraw.uid,))
            return self._user_to_domain(cur.fetchone())
