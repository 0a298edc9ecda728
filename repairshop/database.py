"""
Database connection and session.

Schema source of truth: repairshop.models. Base.metadata.create_all(bind=engine) creates
the tables the tenant-isolation layer protects. The isolation controls themselves
(triggers, check constraints, audit function) are not part of the models; they are
installed by repairshop.tenancy.installer (scripts/apply_tenant_security.py).
"""
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from repairshop.config import get_settings

settings = get_settings()
engine = create_engine(
    settings.database_url,
    pool_pre_ping=True,
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
