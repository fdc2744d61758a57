from sqlalchemy.orm import declarative_base
from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
)


Base = declarative_base()

ORDER_STATUSES = ("pending", "completed", "failed", "cancelled")
TERMINAL_STATUSES = ("completed", "failed", "cancelled")


# ----------------------------
# ORM models
# ----------------------------
class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, autoincrement=True)
    full_name = Column(String, nullable=True)
    # digits only, with country code, no '+'
    phone = Column(String, nullable=False, unique=True)
    email = Column(String, nullable=True)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)


class Event(Base):
    __tablename__ = "events"
    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    # EVT-<id>, assigned right after the insert
    code = Column(String, nullable=True, unique=True)
    event_date = Column(Date, nullable=False)
    event_time = Column(String, nullable=True)  # HH:MM
    venue = Column(String, nullable=True)
    description = Column(Text, nullable=True)
    image_url = Column(String, nullable=True)
    # rendered deep-link QR as a PNG data URL
    qr_artifact = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)


class TicketType(Base):
    __tablename__ = "ticket_types"
    __table_args__ = (
        CheckConstraint(
            "available_quantity >= 0 "
            "AND available_quantity <= total_quantity",
            name="ck_ticket_types_quantity",
        ),
    )
    id = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=False,
                      index=True)
    name = Column(String, nullable=False)
    price = Column(Integer, nullable=False)  # minor units (paise)
    available_quantity = Column(Integer, nullable=False, default=100)
    total_quantity = Column(Integer, nullable=False, default=100)
    created_at = Column(Float, nullable=False)


class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'completed', 'failed', 'cancelled')",
            name="ck_orders_status",
        ),
    )
    id = Column(Integer, primary_key=True, autoincrement=True)
    order_number = Column(String, nullable=False, unique=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=False)
    ticket_type_id = Column(Integer, ForeignKey("ticket_types.id"),
                            nullable=False)
    amount = Column(Integer, nullable=False)  # minor units (paise)
    currency = Column(String, nullable=False, default="INR")
    email = Column(String, nullable=True)

    # pending | completed | failed | cancelled
    status = Column(String, nullable=False, default="pending", index=True)

    provider_reference = Column(String, nullable=True, unique=True)
    provider_payment_id = Column(String, nullable=True)
    payment_url = Column(String, nullable=True)
    # one conversation purchase turn -> at most one order
    session_token = Column(String, nullable=True, unique=True)

    # redemption credential, set on completion
    qr_payload = Column(Text, nullable=True)
    is_scanned = Column(Boolean, nullable=False, default=False)
    scanned_at = Column(Float, nullable=True)
    scanned_by = Column(String, nullable=True)

    created_at = Column(Float, nullable=False, index=True)
    updated_at = Column(Float, nullable=False)
    paid_at = Column(Float, nullable=True)


class ConversationState(Base):
    __tablename__ = "conversation_states"
    phone = Column(String, primary_key=True)
    current_step = Column(String, nullable=False, default="welcome")
    state_data = Column(JSON, nullable=False, default=dict)
    # mirrors state_data["session_token"] for form lookups
    session_token = Column(String, nullable=True, index=True)
    last_interaction = Column(Float, nullable=False)
    created_at = Column(Float, nullable=False)


ADMIN_ROLES = ("scanner", "admin", "superadmin")


class AdminUser(Base):
    __tablename__ = "admin_users"
    __table_args__ = (
        CheckConstraint(
            "role IN ('scanner', 'admin', 'superadmin')",
            name="ck_admin_users_role",
        ),
    )
    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String, nullable=False, unique=True)
    # bcrypt
    password_hash = Column(String, nullable=False)
    full_name = Column(String, nullable=True)
    role = Column(String, nullable=False, default="scanner")
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)
    last_login_at = Column(Float, nullable=True)
