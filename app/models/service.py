import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    SmallInteger,
    String,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()

JSON_TYPE = JSON().with_variant(JSONB, "postgresql")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _uuid_str() -> str:
    return str(uuid.uuid4())


class Customer(Base):
    __tablename__ = "customer"

    customer_id = Column(String(64), primary_key=True, default=_uuid_str)
    email = Column(String(255), unique=True)
    first_name = Column(String(100))
    last_name = Column(String(100))
    phone = Column(String(20))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class ServiceProvider(Base):
    __tablename__ = "service_provider"

    # Keyed by the auth user id.
    service_provider_id = Column(String(64), primary_key=True)
    first_name = Column(String(100))
    last_name = Column(String(100))
    email = Column(String(255))
    phone = Column(String(20))
    jobs_completed = Column(Integer, nullable=False, default=0, server_default=text("0"))
    rating = Column(Numeric(3, 2))
    profile_picture_url = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class Service(Base):
    __tablename__ = "service"

    service_id = Column(String(64), primary_key=True, default=_uuid_str)
    customer_id = Column(String(64), ForeignKey("customer.customer_id"), nullable=False, index=True)
    service_type = Column(String(64), nullable=False)
    # Stored casing is not guaranteed; compare through ServiceStatus.parse / func.lower.
    status = Column(String(32), nullable=False, default="finding_pros", server_default=text("'finding_pros'"))
    scheduling_type = Column(String(16))
    scheduled_date_time = Column(DateTime(timezone=True))
    # Client-side default keeps sub-second ordering on stores whose now() is second-precision.
    date_of_creation = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False)
    location = Column(Text)
    start_location = Column(Text)
    end_location = Column(Text)
    price = Column(Numeric(10, 2))
    payment_method_type = Column(String(16))
    autofill_type = Column(String(16), nullable=False, default="AutoFill", server_default=text("'AutoFill'"))
    service_provider_id = Column(String(64), ForeignKey("service_provider.service_provider_id"), index=True)
    description = Column(Text)


class ServiceFillRequest(Base):
    __tablename__ = "service_fill_request"
    __table_args__ = (Index("idx_fill_request_service_provider", "service_id", "service_provider_id"),)

    # One active bid per (service, provider) is kept by delete-then-insert, not a constraint.
    id = Column(String(64), primary_key=True, default=_uuid_str)
    service_id = Column(String(64), ForeignKey("service.service_id", ondelete="CASCADE"), nullable=False)
    service_provider_id = Column(
        String(64), ForeignKey("service_provider.service_provider_id", ondelete="CASCADE"), nullable=False
    )
    bid = Column(Numeric(10, 2), nullable=False)
    proposed_date_time = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False)


class CustomerRating(Base):
    __tablename__ = "customer_ratings"

    id = Column(String(64), primary_key=True, default=_uuid_str)
    service_id = Column(String(64), ForeignKey("service.service_id", ondelete="CASCADE"), nullable=False, unique=True)
    customer_id = Column(String(64), ForeignKey("customer.customer_id"), nullable=False)
    service_provider_id = Column(String(64), ForeignKey("service_provider.service_provider_id"), nullable=False)
    rating = Column(SmallInteger)
    comment = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(String(64), primary_key=True, default=_uuid_str)
    entity_type = Column(String(50), nullable=False)
    entity_id = Column(String(64), nullable=False, index=True)
    action = Column(String(64), nullable=False)
    old_value = Column(JSON_TYPE)
    new_value = Column(JSON_TYPE)
    actor_type = Column(String(50), nullable=False)
    actor_id = Column(String(64))
    audit_meta = Column("metadata", JSON_TYPE, nullable=True)
    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
