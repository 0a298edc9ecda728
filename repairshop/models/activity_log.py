"""Append-only activity log. Security events are inserted by the audit trigger
(tenancy.policy.AUDIT_FUNCTION); nothing in this package updates or deletes rows."""
from sqlalchemy import Column, Integer, String, Text, DateTime
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func
from repairshop.database import Base


class ActivityLog(Base):
    __tablename__ = "activity_logs"

    id = Column(Integer, primary_key=True, index=True)

    # Owning tenant of the affected row. No FK: audit rows outlive deleted shops.
    shop_id = Column(Integer, nullable=True, index=True)

    # event_type: repair | order | user | customer | system | security
    event_type = Column(String(32), nullable=False, index=True)
    action = Column(String(64), nullable=False, index=True)

    entity_type = Column(String(64), nullable=True)
    entity_id = Column(Integer, nullable=True)
    entity_name = Column(String(255), nullable=True)

    performed_by_username = Column(String(255), nullable=True)
    performed_by_role = Column(String(32), nullable=True)

    description = Column(Text, nullable=False)
    # e.g. old_shop_id, attempted_shop_id, table_name
    details = Column(JSONB, nullable=True)

    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(500), nullable=True)
    severity = Column(String(16), nullable=True, default="info")  # low, info, warning, high, critical

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
