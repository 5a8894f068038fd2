"""Database package"""

from memodams.db.session import AsyncSessionLocal, engine, get_db
from memodams.models.base import Base

__all__ = ["Base", "AsyncSessionLocal", "engine", "get_db"]
