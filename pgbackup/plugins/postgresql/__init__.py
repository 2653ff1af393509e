from .plugin import PostgreSQLPlugin

__all__ = ["PostgreSQLPlugin"]
