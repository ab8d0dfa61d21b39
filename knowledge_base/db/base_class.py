"""
Base class for SQLAlchemy models.
"""
from sqlalchemy import MetaData
from sqlalchemy.orm import DeclarativeBase

# Constraint names match the ones the migrations create
NAMING_CONVENTION = {
    "ix": "ix_%(table_name)s_%(column_0_name)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    """Base class for all knowledge base models; every model names its own table."""

    metadata = MetaData(naming_convention=NAMING_CONVENTION)
