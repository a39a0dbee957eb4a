# Base class for event series database models
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all event series ORM models."""

    pass
