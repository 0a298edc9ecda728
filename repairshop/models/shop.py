"""Tenants: one row per repair shop."""
from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.sql import func
from repairshop.database import Base


class Shop(Base):
    __tablename__ = "shops"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    domain = Column(String(255), nullable=True)
    status = Column(String(20), nullable=False, default="active")  # active, suspended, terminated

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
