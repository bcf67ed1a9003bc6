from datetime import datetime

from sqlalchemy.orm import DeclarativeBase

from helpdesk.db.types import UtcDateTime


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    type_annotation_map = {
        datetime: UtcDateTime(),
    }
