"""Database package"""
from portal.db.session import engine, SessionLocal, init_db
from portal.models.base import Base

__all__ = ["engine", "SessionLocal", "init_db", "Base"]
