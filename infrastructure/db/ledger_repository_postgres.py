from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, List, Optional

import psycopg2
from psycopg2 import errorcodes

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


class PostgresLedgerRepository(LedgerRepository):
    """
    Postgres-backed implementation of `LedgerRepository`.

    Uses the same table layout as the SQLite repository. Every public
    method runs in its own transaction; the balance debit of a withdrawal is
    a conditional `UPDATE` in the same transaction as the insert, so two
    concurrent payouts can never overdraw a user.
    """

    def __init__(self, db_params: dict) -> None:
        self._db_params = db_params
        self._ensure_tables()

    def _get_connection(self):
        return psycopg2.connect(**self._db_params)

    @contextmanager
    def _transaction(self) -> Iterator["psycopg2.extensions.cursor"]:
        try:
            conn = self._get_connection()
        except psycopg2.Error as exc:
            raise StorageError(str(exc)) from exc
        try:
            # `with conn` commits on success and rolls back on error, but
            # does not close the connection.
            with conn:
                with conn.cursor() as cur:
                    yield cur
        except psycopg2.IntegrityError as exc:
            if exc.pgcode == errorcodes.UNIQUE_VIOLATION:
                raise DuplicateIdentityError(str(exc)) from exc
            raise StorageError(str(exc)) from exc
        except psycopg2.Error as exc:
            raise StorageError(str(exc)) from exc
        finally:
            conn.close()

    def _ensure_tables(self) -> None:
        with self._transaction() as cur:
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS users (
                    uid BIGINT PRIMARY KEY,
                    username TEXT NOT NULL UNIQUE,
                    balance INTEGER NOT NULL DEFAULT 0 CHECK (balance >= 0),
                    referral_balance INTEGER NOT NULL DEFAULT 0 CHECK (referral_balance >= 0),
                    referred_by BIGINT,
                    status TEXT NOT NULL DEFAULT 'inactive',
                    registration_date TIMESTAMP NOT NULL,
                    last_check_in TIMESTAMP
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS deposits (
                    id SERIAL PRIMARY KEY,
                    uid BIGINT NOT NULL REFERENCES users (uid),
                    amount INTEGER NOT NULL,
                    date TIMESTAMP NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending',
                    is_reactivation BOOLEAN NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS withdraws (
                    id SERIAL PRIMARY KEY,
                    uid BIGINT NOT NULL REFERENCES users (uid),
                    amount INTEGER NOT NULL,
                    upi_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    date TIMESTAMP NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending'
                )
                """
            )

    @staticmethod
    def _user_to_domain(row: tuple) -> User:
        return User(
            uid=int(row[0]),
            username=row[1],
            balance=int(row[2]),
            referral_balance=int(row[3]),
            referred_by=int(row[4]) if row[4] is not None else None,
            status=UserStatus(row[5]),
            registration_date=row[6],
            last_check_in=row[7],
        )

    @staticmethod
    def _deposit_to_domain(row: tuple) -> Deposit:
        return Deposit(
            id=int(row[0]),
            uid=int(row[1]),
            amount=int(row[2]),
            date=row[3],
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
            date=row[5],
            status=WithdrawStatus(row[6]),
        )

    # Users

    def find_user_by_id(self, uid: int) -> Optional[User]:
        with self._transaction() as cur:
            cur.execute(f"SELECT {_USER_COLUMNS} FROM users WHERE uid = %s", (uid,))
            row = cur.fetchone()
            return self._user_to_domain(row) if row else None

    def find_user_by_username(self, username: str) -> Optional[User]:
        with self._transaction() as cur:
            cur.execute(f"SELECT {_USER_COLUMNS} FROM users WHERE username = %s", (username,))
            row = cur.fetchone()
            return self._user_to_domain(row) if row else None

    def count_users(self) -> int:
        with self._transaction() as cur:
            cur.execute("SELECT COUNT(*) FROM users")
            return int(cur.fetchone()[0])

    def count_referrals(self, uid: int) -> int:
        with self._transaction() as cur:
            cur.execute("SELECT COUNT(*) FROM users WHERE referred_by = %s", (uid,))
            return int(cur.fetchone()[0])

    def create_user(self, user: User) -> None:
        with self._transaction() as cur:
            cur.execute(
                f"""
                INSERT INTO users ({_USER_COLUMNS})
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    user.uid,
                    user.username,
                    user.balance,
                    user.referral_balance,
                    user.referred_by,
                    user.status.value,
                    user.registration_date,
                    user.last_check_in,
                ),
            )

    def save_user(self, user: User) -> None:
        with self._transaction() as cur:
            cur.execute(
                """
                UPDATE users
                SET balance = %s, referral_balance = %s, status = %s, last_check_in = %s
                WHERE uid = %s
                """,
                (
                    user.balance,
                    user.referral_balance,
                    user.status.value,
                    user.last_check_in,
                    user.uid,
                ),
            )

    # Deposits

    def count_deposits(self, uid: int) -> int:
        with self._transaction() as cur:
            cur.execute("SELECT COUNT(*) FROM deposits WHERE uid = %s", (uid,))
            return int(cur.fetchone()[0])

    def find_oldest_deposit(self, uid: int) -> Optional[Deposit]:
        with self._transaction() as cur:
            cur.execute(
                f"""
                SELECT {_DEPOSIT_COLUMNS} FROM deposits
                WHERE uid = %s
                ORDER BY date ASC, id ASC
                LIMIT 1
                """,
                (uid,),
            )
            row = cur.fetchone()
            return self._deposit_to_domain(row) if row else None

    def delete_deposit(self, deposit_id: int) -> None:
        with self._transaction() as cur:
            cur.execute("DELETE FROM deposits WHERE id = %s", (deposit_id,))

    @staticmethod
    def _insert_deposit(cur, deposit: Deposit) -> Deposit:
        cur.execute(
            """
            INSERT INTO deposits (uid, amount, date, status, is_reactivation)
            VALUES (%s, %s, %s, %s, %s)
            RETURNING id
            """,
            (
                deposit.uid,
                deposit.amount,
                deposit.date,
                deposit.status.value,
                deposit.is_reactivation,
            ),
        )
        deposit.id = int(cur.fetchone()[0])
        return deposit

    def create_deposit(self, deposit: Deposit) -> Deposit:
        with self._transaction() as cur:
            return self._insert_deposit(cur, deposit)

    def find_deposits_by_user(self, uid: int) -> List[Deposit]:
        with self._transaction() as cur:
            cur.execute(
                f"SELECT {_DEPOSIT_COLUMNS} FROM deposits WHERE uid = %s ORDER BY date ASC, id ASC",
                (uid,),
            )
            return [self._deposit_to_domain(row) for row in cur.fetchall()]

    def add_deposit(self, deposit: Deposit, retain: int) -> Deposit:
        with self._transaction() as cur:
            # Serialise concurrent inserts for the same user on the owner row.
            cur.execute("SELECT uid FROM users WHERE uid = %s FOR UPDATE", (deposit.uid,))
            self._insert_deposit(cur, deposit)
            cur.execute(
                """
                DELETE FROM deposits
                WHERE uid = %s AND id NOT IN (
                    SELECT id FROM deposits
                    WHERE uid = %s
                    ORDER BY date DESC, id DESC
                    LIMIT %s
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
                WHERE uid = %s AND date >= %s AND date < %s
                ORDER BY date ASC, id ASC
                """,
                (uid, start, end),
            )
            return [self._withdraw_to_domain(row) for row in cur.fetchall()]

    def find_withdraws_by_user(
        self,
        uid: int,
        sort_desc: bool = True,
        limit: Optional[int] = None,
    ) -> List[Withdraw]:
        order = "DESC" if sort_desc else "ASC"
        with self._transaction() as cur:
            cur.execute(
                f"""
                SELECT {_WITHDRAW_COLUMNS} FROM withdraws
                WHERE uid = %s
                ORDER BY date {order}, id {order}
                LIMIT %s
                """,
                (uid, limit),
            )
            return [self._withdraw_to_domain(row) for row in cur.fetchall()]

    @staticmethod
    def _insert_withdraw(cur, withdraw: Withdraw) -> Withdraw:
        cur.execute(
            """
            INSERT INTO withdraws (uid, amount, upi_id, name, date, status)
            VALUES (%s, %s, %s, %s, %s, %s)
            RETURNING id
            """,
            (
                withdraw.uid,
                withdraw.amount,
                withdraw.upi_id,
                withdraw.name,
                withdraw.date,
                withdraw.status.value,
            ),
        )
        withdraw.id = int(cur.fetchone()[0])
        return withdraw

    def create_withdraw(self, withdraw: Withdraw) -> Withdraw:
        with self._transaction() as cur:
            return self._insert_withdraw(cur, withdraw)

    def record_withdrawal(self, withdraw: Withdraw) -> User:
        with self._transaction() as cur:
            cur.execute(
                f"""
                UPDATE users
                SET balance = balance - %s
                WHERE uid = %s AND balance >= %s
                RETURNING {_USER_COLUMNS}
                """,
                (withdraw.amount, withdraw.uid, withdraw.amount),
            )
            row = cur.fetchone()
            if row is None:
                raise InsufficientFundsError(
                    f"User {withdraw.uid} cannot be debited {withdraw.amount}"
                )
            self._insert_withdraw(cur, withdraw)
            return self._user_to_domain(row)
