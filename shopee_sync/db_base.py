"""
SQLAlchemy declarative base.

Kept in its own module so models can be imported without creating an engine.
"""

from sqlalchemy.orm import declarative_base

Base = declarative_base()
