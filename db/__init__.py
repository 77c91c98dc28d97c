from .client import Database, DatabaseError

__all__ = ["Database", "DatabaseError"]
