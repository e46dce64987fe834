"""Event model (owned by the catalogue side of the application)"""

from sqlalchemy import Column, String, Boolean, Enum
import enum

from .base import Base, TimestampedModel, UUIDModel

class EventCategory(str, enum.Enum):
    TREKKING = "TREKKING"
    CAMPING = "CAMPING"
    WILDLIFE = "WILDLIFE"
    CULTURAL = "CULTURAL"
    ADVENTURE = "ADVENTURE"
    SPIRITUAL = "SPIRITUAL"

class Event(Base, TimestampedModel, UUIDModel):
    """Bookable adventure event"""
    
    __tablename__ = "events"
    
    title = Column(String(200), nullable=False)
    slug = Column(String(255), unique=True, nullable=False, index=True)
    category = Column(Enum(EventCategory), nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False)
