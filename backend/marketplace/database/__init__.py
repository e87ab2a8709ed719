"""
Database package.

- connection: async engine, session factory and health checks
- base: declarative base and shared column mixins
- models: ORM models for catalog, orders, payments and inventory ledger
"""

__all__ = []
