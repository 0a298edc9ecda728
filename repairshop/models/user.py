"""Tenant principals. Privileged roles must belong to a shop (see tenancy.policy)."""
from sqlalchemy import Column, Integer, String, Enum as SQLEnum, DateTime, Boolean, ForeignKey
from sqlalchemy.sql import func
from repairshop.database import Base
import enum


class UserRole(str, enum.Enum):
    owner = "owner"
    employee = "employee"
    kiosk = "kiosk"
    superadmin = "superadmin"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(255), unique=True, nullable=True)  # only shop owners have usernames
    email = Column(String(255), index=True, nullable=False)
    hashed_password = Column(String(255), nullable=False)
    role = Column(SQLEnum(UserRole), nullable=False, default=UserRole.owner)
    is_active = Column(Boolean, default=False, nullable=False)

    # Write-once tenant identifier; NULL only for superadmins (and legacy rows awaiting assignment)
    shop_id = Column(Integer, ForeignKey("shops.id"), nullable=True, index=True)
    parent_user_id = Column(Integer, nullable=True)  # shop owner for employees / kiosks

    first_name = Column(String(255), nullable=True)
    last_name = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
