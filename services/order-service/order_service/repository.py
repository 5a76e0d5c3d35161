from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from .database import get_connection, is_sqlite

ORDER_COLUMNS = """
    id, user_id, status, total_amount, address, payment_id,
    cancel_reason, created_at, updated_at
"""

PAYMENT_COLUMNS = "id, order_id, method, status, amount, paid_at, created_at, updated_at"


@dataclass(frozen=True)
class OrderRecord:
    id: int
    user_id: str
    status: str
    total_amount: float
    address: Optional[str]
    payment_id: Optional[int]
    cancel_reason: Optional[str]
    created_at: str
    updated_at: str


@dataclass(frozen=True)
class PaymentRecord:
    id: int
    order_id: int
    method: str
    status: str
    amount: float
    paid_at: Optional[str]
    created_at: str
    updated_at: str


class OrderRepository:
    """Data-access layer for orders and their payment records."""

    def __init__(self, connection_factory=get_connection):
        self._connection_factory = connection_factory

    @contextmanager
    def _connection(self):
        conn = self._connection_factory()
        try:
            yield conn
        finally:
            conn.close()

    def create_order(
        self,
        user_id: str,
        total_amount: float,
        status: str,
        address: str | None = None,
    ) -> OrderRecord:
        now = _now()
        with self._connection() as conn:
            placeholder = _placeholder(conn)
            order_id = _insert_returning_id(
                conn,
                f"""
                INSERT INTO orders (
                    user_id, status, total_amount, address, payment_id,
                    cancel_reason, created_at, updated_at
                ) VALUES ({placeholder}, {placeholder}, {placeholder}, {placeholder}, NULL,
                          NULL, {placeholder}, {placeholder})
                """,
                (user_id, status, total_amount, address, now, now),
            )
            conn.commit()
        return OrderRecord(
            id=order_id,
            user_id=user_id,
            status=status,
            total_amount=total_amount,
            address=address,
            payment_id=None,
            cancel_reason=None,
            created_at=now,
            updated_at=now,
        )

    def link_payment(self, order_id: int, payment_id: int) -> None:
        with self._connection() as conn:
            placeholder = _placeholder(conn)
            conn.execute(
                f"""
                UPDATE orders
                SET payment_id = {placeholder}, updated_at = {placeholder}
                WHERE id = {placeholder};
                """,
                (payment_id, _now(), order_id),
            )
            conn.commit()

    def transition_order(self, order_id: int, *, expected: str, status: str) -> bool:
        """Move an order from ``expected`` to ``status``; False if it was elsewhere."""
        with self._connection() as conn:
            placeholder = _placeholder(conn)
            cursor = conn.execute(
                f"""
                UPDATE orders
                SET status = {placeholder}, updated_at = {placeholder}
                WHERE id = {placeholder} AND status = {placeholder};
                """,
                (status, _now(), order_id, expected),
            )
            conn.commit()
            return cursor.rowcount == 1

    def cancel_order(self, order_id: int, reason: str | None) -> None:
        with self._connection() as conn:
            placeholder = _placeholder(conn)
            conn.execute(
                f"""
                UPDATE orders
                SET status = 'CANCELLED', cancel_reason = {placeholder}, updated_at = {placeholder}
                WHERE id = {placeholder};
                """,
                (reason, _now(), order_id),
            )
            conn.commit()

    def get_order(self, order_id: int) -> OrderRecord | None:
        with self._connection() as conn:
            placeholder = _placeholder(conn)
            row = conn.execute(
                f"SELECT {ORDER_COLUMNS} FROM orders WHERE id = {placeholder};",
                (order_id,),
            ).fetchone()
            if row is None:
                return None
            return _order_from_row(row)

    def list_orders_for_user(self, user_id: str, limit: int = 50) -> list[OrderRecord]:
        with self._connection() as conn:
            placeholder = _placeholder(conn)
            rows = conn.execute(
                f"""
                SELECT {ORDER_COLUMNS}
                FROM orders
                WHERE user_id = {placeholder}
                ORDER BY created_at DESC, id DESC
                LIMIT {placeholder};
                """,
                (user_id, limit),
            ).fetchall()
        return [_order_from_row(row) for row in rows]

    def create_payment(self, order_id: int, method: str, status: str, amount: float) -> PaymentRecord:
        now = _now()
        paid_at = now if status == "SUCCESS" else None
        with self._connection() as conn:
            placeholder = _placeholder(conn)
            payment_id = _insert_returning_id(
                conn,
                f"""
                INSERT INTO payments (order_id, method, status, amount, paid_at, created_at, updated_at)
                VALUES ({placeholder}, {placeholder}, {placeholder}, {placeholder},
                        {placeholder}, {placeholder}, {placeholder})
                """,
                (order_id, method, status, amount, paid_at, now, now),
            )
            conn.commit()
        return PaymentRecord(
            id=payment_id,
            order_id=order_id,
            method=method,
            status=status,
            amount=amount,
            paid_at=paid_at,
            created_at=now,
            updated_at=now,
        )

    def transition_payment(self, payment_id: int, *, expected: str, status: str) -> bool:
        """Compare-and-set on the payment status.

        Only one caller can move a record out of ``expected``; everybody else gets
        False and has to read the current state back.
        """
        now = _now()
        paid_at = now if status == "SUCCESS" else None
        with self._connection() as conn:
            placeholder = _placeholder(conn)
            cursor = conn.execute(
                f"""
                UPDATE payments
                SET status = {placeholder},
                    paid_at = COALESCE({placeholder}, paid_at),
                    updated_at = {placeholder}
                WHERE id = {placeholder} AND status = {placeholder};
                """,
                (status, paid_at, now, payment_id, expected),
            )
            conn.commit()
            return cursor.rowcount == 1

    def get_payment(self, payment_id: int) -> PaymentRecord | None:
        with self._connection() as conn:
            placeholder = _placeholder(conn)
            row = conn.execute(
                f"SELECT {PAYMENT_COLUMNS} FROM payments WHERE id = {placeholder};",
                (payment_id,),
            ).fetchone()
            if row is None:
                return None
            return _payment_from_row(row)


def _order_from_row(row) -> OrderRecord:
    return OrderRecord(
        id=row["id"],
        user_id=row["user_id"],
        status=row["status"],
        total_amount=row["total_amount"],
        address=row["address"],
        payment_id=row["payment_id"],
        cancel_reason=row["cancel_reason"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _payment_from_row(row) -> PaymentRecord:
    return PaymentRecord(
        id=row["id"],
        order_id=row["order_id"],
        method=row["method"],
        status=row["status"],
        amount=row["amount"],
        paid_at=row["paid_at"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _insert_returning_id(conn, sql: str, params: tuple) -> int:
    if is_sqlite(conn):
        return conn.execute(sql, params).lastrowid
    row = conn.execute(f"{sql} RETURNING id", params).fetchone()
    return row["id"]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _placeholder(conn) -> str:
    module = conn.__class__.__module__
    return "%s" if "psycopg" in module else "?"
