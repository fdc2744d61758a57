from __future__ import annotations
from datetime import date
from typing import Any, Dict, List, Optional, Sequence, Tuple, Type

from sqlalchemy import func, select, text, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..helpers import now_ts
from ..infra.sql import Gated
from .orm import (
    AdminUser, ConversationState, Event, Order, TicketType, User,
    ORDER_STATUSES,
)


class Store:
    """Persistence interface.

    Every call runs in its own short session behind the DB gate. State
    transitions go through ``update_where`` (compare-and-swap) and report
    the number of rows they changed; callers decide what 0 means.
    """

    def __init__(self, sessions: async_sessionmaker[AsyncSession],
                 gated: Gated) -> None:
        self.sessions = sessions
        self.gated = gated

    # ----------------------------
    # generic
    # ----------------------------
    async def get(self, model: Type[Any], key: Any) -> Optional[Any]:
        async with self.gated():
            async with self.sessions() as db:
                return await db.get(model, key)

    async def query(self, model: Type[Any], *criteria,
                    order_by=None, limit: Optional[int] = None) -> List[Any]:
        stmt = select(model).where(*criteria)
        if order_by is not None:
            stmt = stmt.order_by(order_by)
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self.gated():
            async with self.sessions() as db:
                result = await db.execute(stmt)
                return list(result.scalars().all())

    async def first(self, model: Type[Any], *criteria) -> Optional[Any]:
        rows = await self.query(model, *criteria, limit=1)
        return rows[0] if rows else None

    async def add(self, obj: Any) -> Any:
        async with self.gated():
            async with self.sessions() as db:
                async with db.begin():
                    db.add(obj)
                    await db.flush()
        return obj

    async def update_where(self, model: Type[Any], criteria: Sequence,
                           fields: Dict[str, Any]) -> int:
        stmt = update(model).where(*criteria).values(**fields)
        async with self.gated():
            async with self.sessions() as db:
                async with db.begin():
                    result = await db.execute(stmt)
                    return result.rowcount

    # ----------------------------
    # users
    # ----------------------------
    async def upsert_user(self, phone: str, full_name: Optional[str] = None,
                          email: Optional[str] = None) -> User:
        now = now_ts()
        async with self.gated():
            async with self.sessions() as db:
                async with db.begin():
                    await db.execute(text("""
                        INSERT INTO users (phone, full_name, email,
                                           created_at, updated_at)
                        VALUES (:phone, :full_name, :email, :now, :now)
                        ON CONFLICT (phone) DO UPDATE SET
                          full_name = COALESCE(EXCLUDED.full_name,
                                               users.full_name),
                          email = COALESCE(EXCLUDED.email, users.email),
                          updated_at = EXCLUDED.updated_at
                    """), {"phone": phone, "full_name": full_name,
                           "email": email, "now": now})
                    result = await db.execute(
                        select(User).where(User.phone == phone)
                    )
                    return result.scalar_one()

    # ----------------------------
    # events / ticket types
    # ----------------------------
    async def upcoming_events(self, limit: int = 10,
                              today: Optional[date] = None) -> List[Event]:
        return await self.query(
            Event,
            Event.is_active.is_(True),
            Event.event_date >= (today or date.today()),
            order_by=Event.event_date,
            limit=limit,
        )

    async def active_event(self, event_id: int) -> Optional[Event]:
        return await self.first(
            Event, Event.id == event_id, Event.is_active.is_(True)
        )

    async def event_by_code(self, code: str) -> Optional[Event]:
        return await self.first(
            Event, Event.code == code, Event.is_active.is_(True)
        )

    async def ticket_types_for_event(self, event_id: int) -> List[TicketType]:
        return await self.query(
            TicketType, TicketType.event_id == event_id,
            order_by=TicketType.price,
        )

    async def all_events(self, limit: int = 100) -> List[Event]:
        return await self.query(Event, order_by=Event.event_date.desc(),
                                limit=limit)

    async def create_event(self, fields: Dict[str, Any],
                           tickets: List[Dict[str, Any]]
                           ) -> Tuple[Event, List[TicketType]]:
        now = now_ts()
        async with self.gated():
            async with self.sessions() as db:
                async with db.begin():
                    ev = Event(created_at=now, updated_at=now, **fields)
                    db.add(ev)
                    await db.flush()
                    ev.code = f"EVT-{ev.id}"
                    rows = []
                    for t in tickets:
                        qty = int(t.get("total_quantity") or 100)
                        tt = TicketType(
                            event_id=ev.id,
                            name=t["name"],
                            price=int(t["price"]),
                            total_quantity=qty,
                            available_quantity=int(
                                t.get("available_quantity", qty)
                            ),
                            created_at=now,
                        )
                        db.add(tt)
                        rows.append(tt)
                    await db.flush()
        return ev, rows

    # ----------------------------
    # orders
    # ----------------------------
    async def complete_order_if_pending(
        self, order_id: int, payment_id: Optional[str], qr_payload: str
    ) -> Tuple[bool, bool]:
        """pending -> completed plus the inventory decrement, one transaction.

        The conditional UPDATE is the first statement, so on SQLite the
        write lock is taken up front and concurrent appliers serialize on
        it. Returns (applied, decremented).
        """
        now = now_ts()
        async with self.gated():
            async with self.sessions() as db:
                async with db.begin():
                    result = await db.execute(
                        update(Order)
                        .where(Order.id == order_id,
                               Order.status == "pending")
                        .values(status="completed",
                                provider_payment_id=payment_id,
                                qr_payload=qr_payload,
                                paid_at=now,
                                updated_at=now)
                    )
                    if result.rowcount != 1:
                        return False, False
                    dec = await db.execute(text("""
                        UPDATE ticket_types
                           SET available_quantity = available_quantity - 1
                         WHERE id = (SELECT ticket_type_id FROM orders
                                      WHERE id = :order_id)
                           AND available_quantity > 0
                    """), {"order_id": order_id})
                    return True, dec.rowcount == 1

    async def mark_scanned_if_unscanned(self, order_id: int,
                                        operator: str) -> int:
        now = now_ts()
        return await self.update_where(
            Order,
            (Order.id == order_id,
             Order.status == "completed",
             Order.is_scanned.is_(False)),
            {"is_scanned": True, "scanned_at": now, "scanned_by": operator,
             "updated_at": now},
        )

    async def transition_if_pending(self, order_id: int, status: str) -> int:
        return await self.update_where(
            Order,
            (Order.id == order_id, Order.status == "pending"),
            {"status": status, "updated_at": now_ts()},
        )

    async def order_by_number(self, order_number: str) -> Optional[Order]:
        return await self.first(Order, Order.order_number == order_number)

    async def order_by_reference(self, ref: str) -> Optional[Order]:
        return await self.first(Order, Order.provider_reference == ref)

    async def order_by_session_token(self, token: str) -> Optional[Order]:
        return await self.first(Order, Order.session_token == token)

    async def order_detail(self, order_number: str) -> Optional[Dict[str, Any]]:
        async with self.gated():
            async with self.sessions() as db:
                result = await db.execute(
                    select(Order, User, Event, TicketType)
                    .join(User, User.id == Order.user_id)
                    .join(Event, Event.id == Order.event_id)
                    .join(TicketType, TicketType.id == Order.ticket_type_id)
                    .where(Order.order_number == order_number)
                )
                row = result.first()
        if row is None:
            return None
        order, user, ev, tt = row
        return {"order": order, "user": user, "event": ev, "ticket": tt}

    async def list_orders(self, status: Optional[str] = None,
                          event_id: Optional[int] = None,
                          limit: int = 50, offset: int = 0
                          ) -> Tuple[int, List[Dict[str, Any]]]:
        """Newest first, with the customer, event and ticket type."""
        criteria = []
        if status:
            criteria.append(Order.status == status)
        if event_id is not None:
            criteria.append(Order.event_id == event_id)
        stmt = (
            select(Order, User, Event, TicketType)
            .join(User, User.id == Order.user_id)
            .join(Event, Event.id == Order.event_id)
            .join(TicketType, TicketType.id == Order.ticket_type_id)
            .where(*criteria)
            .order_by(Order.created_at.desc(), Order.id.desc())
            .limit(limit).offset(offset)
        )
        count = select(func.count(Order.id)).where(*criteria)
        async with self.gated():
            async with self.sessions() as db:
                total = (await db.execute(count)).scalar_one()
                rows = (await db.execute(stmt)).all()
        return total, [
            {"order": o, "user": u, "event": e, "ticket": t}
            for o, u, e, t in rows
        ]

    async def order_stats(self) -> Dict[str, Any]:
        by_status = (
            select(Order.status, func.count(Order.id),
                   func.coalesce(func.sum(Order.amount), 0))
            .group_by(Order.status)
        )
        scanned = select(func.count(Order.id)).where(
            Order.is_scanned.is_(True)
        )
        events = select(func.count(Event.id)).where(
            Event.is_active.is_(True)
        )
        users = select(func.count(User.id))
        async with self.gated():
            async with self.sessions() as db:
                rows = (await db.execute(by_status)).all()
                out = {
                    "scanned": (await db.execute(scanned)).scalar_one(),
                    "activeEvents": (await db.execute(events)).scalar_one(),
                    "customers": (await db.execute(users)).scalar_one(),
                }
        counts = {s: 0 for s in ORDER_STATUSES}
        revenue = 0
        for status, n, amount in rows:
            counts[status] = n
            if status == "completed":
                revenue = int(amount)
        out.update(orders=counts, totalOrders=sum(counts.values()),
                   revenue=revenue)
        return out

    async def pending_orders_for_reconcile(
        self, prefix: str, created_after: float, created_before: float,
        limit: int = 100,
    ) -> List[Order]:
        return await self.query(
            Order,
            Order.status == "pending",
            Order.provider_reference.like(f"{prefix}%"),
            Order.created_at > created_after,
            Order.created_at < created_before,
            order_by=Order.created_at,
            limit=limit,
        )

    # ----------------------------
    # conversation state
    # ----------------------------
    async def load_conversation(self, phone: str
                                ) -> Optional[ConversationState]:
        return await self.get(ConversationState, phone)

    async def conversation_by_session_token(
            self, token: str) -> Optional[ConversationState]:
        return await self.first(
            ConversationState, ConversationState.session_token == token
        )

    async def save_conversation(self, phone: str, step: str,
                                data: Dict[str, Any]) -> None:
        now = now_ts()
        values = {
            "phone": phone,
            "current_step": step,
            "state_data": data,
            "session_token": data.get("session_token"),
            "last_interaction": now,
            "created_at": now,
        }
        async with self.gated():
            async with self.sessions() as db:
                async with db.begin():
                    insert = (postgresql.insert
                              if db.bind.dialect.name == "postgresql"
                              else sqlite.insert)
                    stmt = insert(ConversationState).values(**values)
                    stmt = stmt.on_conflict_do_update(
                        index_elements=[ConversationState.phone],
                        set_={
                            "current_step": stmt.excluded.current_step,
                            "state_data": stmt.excluded.state_data,
                            "session_token": stmt.excluded.session_token,
                            "last_interaction":
                                stmt.excluded.last_interaction,
                        },
                    )
                    await db.execute(stmt)

    # ----------------------------
    # admin accounts
    # ----------------------------
    async def admin_by_username(self, username: str) -> Optional[AdminUser]:
        return await self.first(AdminUser, AdminUser.username == username)

    async def list_admins(self) -> List[AdminUser]:
        return await self.query(AdminUser, order_by=AdminUser.id)
