"""
tripsync/DB/base_class.py
=================================
SQLAlchemy Base Model Definition
=================================

Declarative base shared by every model of the service (SQLAlchemy 2.0
style). Models that do not set ``__tablename__`` explicitly get the
lowercased class name.

Usage Example:
-------------
    from tripsync.DB.base_class import Base
    from sqlalchemy import Column, String

    class Device(Base):
        device_id = Column(String(64), primary_key=True)

Note:
    All models must inherit from this Base so Alembic autogenerate and
    ``create_all()`` see them through ``Base.metadata``.
"""

from sqlalchemy.orm import DeclarativeBase, declared_attr


class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy models in the application.
    """

    @declared_attr.directive
    def __tablename__(cls) -> str:
        return cls.__name__.lower()
