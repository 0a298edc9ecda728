"""
All SQLAlchemy models. Schema is the source of truth for new DBs.
Base.metadata.create_all() creates every table; isolation triggers and constraints are
installed separately (repairshop.tenancy.installer).
"""
from repairshop.models.shop import Shop
from repairshop.models.user import User, UserRole
from repairshop.models.customer import Customer, Repair
from repairshop.models.activity_log import ActivityLog

__all__ = [
    "Shop",
    "User",
    "UserRole",
    "Customer",
    "Repair",
    "ActivityLog",
]
