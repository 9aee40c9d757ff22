"""
Subscriber store.

SQLAlchemy Core access to the `users` and `subscriptions` tables. Each
method opens its own session and commits before returning.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

from sqlalchemy import select, insert, update, func
from sqlalchemy.exc import IntegrityError

from tradinggenie.core.database import get_db_session, users, subscriptions

logger = logging.getLogger("tradinggenie.subscribers")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def user_to_dict(row) -> Dict[str, Any]:
    """Render a users row with its embedded subscription summary."""
    m = row._mapping
    return {
        "id": m["id"],
        "email": m["email"],
        "telegram_username": m["telegram_username"],
        "telegram_chat_id": m["telegram_chat_id"],
        "subscription": {
            "plan": m["subscription_plan"],
            "status": m["subscription_status"],
            "stripe_customer_id": m["stripe_customer_id"],
            "stripe_subscription_id": m["stripe_subscription_id"],
            "current_period_end": m["current_period_end"],
            "created_at": m["subscription_created_at"],
        },
        "created_at": m["created_at"],
    }


def subscription_to_dict(row) -> Dict[str, Any]:
    m = row._mapping
    return {
        "id": m["id"],
        "user_id": m["user_id"],
        "plan": m["plan"],
        "status": m["status"],
        "stripe_subscription_id": m["stripe_subscription_id"],
        "current_period_start": m["current_period_start"],
        "current_period_end": m["current_period_end"],
        "cancel_at_period_end": bool(m["cancel_at_period_end"]),
        "created_at": m["created_at"],
    }


class SubscriberStore:
    """User and subscription record persistence."""

    def upsert_user_by_email(
        self,
        email: str,
        telegram_username: str,
        telegram_chat_id: str,
    ) -> Tuple[Dict[str, Any], bool]:
        """
        Find the user for `email` or create it.

        Returns (user, created). An existing user is returned unchanged.

        Race policy: two requests for a new email may both miss the select.
        The unique constraint on users.email lets exactly one insert win; the
        loser rolls back and reads the winner's row.
        """
        email = normalize_email(email)
        existing = self.get_user_by_email(email)
        if existing:
            return existing, False

        user_id = str(uuid4())
        try:
            with get_db_session() as session:
                session.execute(
                    insert(users).values(
                        id=user_id,
                        email=email,
                        telegram_username=telegram_username,
                        telegram_chat_id=telegram_chat_id,
                        created_at=_utcnow(),
                    )
                )
                session.commit()
        except IntegrityError:
            logger.info("user.upsert_race", extra={"email_domain": email.rpartition("@")[2]})
            winner = self.get_user_by_email(email)
            if winner is None:
                raise
            return winner, False

        return self.get_user(user_id), True

    def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        with get_db_session() as session:
            row = session.execute(select(users).where(users.c.id == user_id)).fetchone()
        return user_to_dict(row) if row else None

    def get_user_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        with get_db_session() as session:
            row = session.execute(
                select(users).where(users.c.email == normalize_email(email))
            ).fetchone()
        return user_to_dict(row) if row else None

    def find_user_by_subscription(self, stripe_subscription_id: Optional[str]) -> Optional[Dict[str, Any]]:
        if not stripe_subscription_id:
            return None
        with get_db_session() as session:
            row = session.execute(
                select(users).where(users.c.stripe_subscription_id == stripe_subscription_id)
            ).fetchone()
        return user_to_dict(row) if row else None

    def count_users(self) -> int:
        with get_db_session() as session:
            return session.execute(select(func.count()).select_from(users)).scalar_one()

    def activate_subscription(
        self,
        user_id: str,
        plan: str,
        stripe_customer_id: Optional[str],
        stripe_subscription_id: str,
        current_period_end: Optional[datetime],
    ) -> bool:
        """Write the user's subscription summary as active. False if the user does not exist."""
        with get_db_session() as session:
            result = session.execute(
                update(users)
                .where(users.c.id == user_id)
                .values(
                    subscription_plan=plan,
                    subscription_status="active",
                    stripe_customer_id=stripe_customer_id,
                    stripe_subscription_id=stripe_subscription_id,
                    current_period_end=current_period_end,
                    subscription_created_at=_utcnow(),
                )
            )
            session.commit()
            return result.rowcount > 0

    def has_subscription_record(self, stripe_subscription_id: str) -> bool:
        with get_db_session() as session:
            row = session.execute(
                select(subscriptions.c.id).where(
                    subscriptions.c.stripe_subscription_id == stripe_subscription_id
                )
            ).fetchone()
        return row is not None

    def create_subscription_record(
        self,
        user_id: str,
        plan: str,
        status: str,
        stripe_subscription_id: str,
        current_period_start: Optional[datetime] = None,
        current_period_end: Optional[datetime] = None,
    ) -> int:
        with get_db_session() as session:
            result = session.execute(
                insert(subscriptions).values(
                    user_id=user_id,
                    plan=plan,
                    status=status,
                    stripe_subscription_id=stripe_subscription_id,
                    current_period_start=current_period_start,
                    current_period_end=current_period_end,
                    cancel_at_period_end=False,
                    created_at=_utcnow(),
                )
            )
            session.commit()
            return result.inserted_primary_key[0]

    def update_subscription_state(
        self,
        user_id: str,
        stripe_subscription_id: str,
        status: str,
        current_period_end: Optional[datetime] = None,
        cancel_at_period_end: Optional[bool] = None,
    ) -> None:
        """
        Apply a status change to the user summary and its subscription records.

        `current_period_end` and `cancel_at_period_end` are left untouched when
        None. The cancel flag is only kept on the record.
        """
        user_values: Dict[str, Any] = {"subscription_status": status}
        record_values: Dict[str, Any] = {"status": status}
        if current_period_end is not None:
            user_values["current_period_end"] = current_period_end
            record_values["current_period_end"] = current_period_end
        if cancel_at_period_end is not None:
            record_values["cancel_at_period_end"] = cancel_at_period_end

        with get_db_session() as session:
            session.execute(
                update(users).where(users.c.id == user_id).values(**user_values)
            )
            session.execute(
                update(subscriptions)
                .where(subscriptions.c.stripe_subscription_id == stripe_subscription_id)
                .values(**record_values)
            )
            session.commit()

    def list_users_by_status(self, status: str) -> List[Dict[str, Any]]:
        with get_db_session() as session:
            rows = session.execute(
                select(users)
                .where(users.c.subscription_status == status)
                .order_by(users.c.created_at.desc())
            ).fetchall()
        return [user_to_dict(r) for r in rows]

    def list_users_with_subscription(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        query = (
            select(users)
            .where(users.c.stripe_subscription_id.is_not(None))
            .order_by(users.c.created_at)
        )
        if limit:
            query = query.limit(limit)
        with get_db_session() as session:
            rows = session.execute(query).fetchall()
        return [user_to_dict(r) for r in rows]

    def list_subscription_records(
        self,
        user_id: Optional[str] = None,
        stripe_subscription_id: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        query = select(subscriptions)
        if user_id is not None:
            query = query.where(subscriptions.c.user_id == user_id)
        if stripe_subscription_id is not None:
            query = query.where(subscriptions.c.stripe_subscription_id == stripe_subscription_id)
        query = query.order_by(subscriptions.c.created_at.desc(), subscriptions.c.id.desc())
        with get_db_session() as session:
            rows = session.execute(query).fetchall()
        return [subscription_to_dict(r) for r in rows]
