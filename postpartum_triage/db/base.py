"""SQLAlchemy 2.0 declarative base configuration."""

from sqlalchemy import MetaData
from sqlalchemy.orm import DeclarativeBase, registry

# Naming convention for constraints
convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

# Shared registry for all models
_mapper_registry = registry(metadata=MetaData(naming_convention=convention))


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models.

    Tables declare their own primary keys: case and change identifiers are
    part of the public record, not surrogate ids.
    """

    registry = _mapper_registry
    metadata = _mapper_registry.metadata
