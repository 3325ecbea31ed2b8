"""SQLAlchemy-backed connection and query builder."""

from entityspine.db.builder import SqlQueryBuilder
from entityspine.db.connection import Database, WriteResult
from entityspine.db.engine import create_engine

__all__ = ["Database", "SqlQueryBuilder", "WriteResult", "create_engine"]
