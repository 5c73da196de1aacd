"""
Persistence package for Users Service.

PostgreSQL is the authoritative copy of every user record.
"""

from .postgres import PostgreSQLUserStore

__all__ = ["PostgreSQLUserStore"]
