"""Admin audit log model"""

from sqlalchemy import Column, String, Text, JSON

from .base import Base, TimestampedModel, UUIDModel

class AdminLog(Base, TimestampedModel, UUIDModel):
    """Log all admin actions for audit trail"""
    
    __tablename__ = "admin_logs"
    
    admin_id = Column(String(64), nullable=False, index=True)
    action = Column(String(100), nullable=False)  # create_promo_code, retire_promo_code, etc.
    entity_type = Column(String(50), nullable=False)  # promo_code
    entity_id = Column(String(200), nullable=False)
    description = Column(Text)
    old_values = Column(JSON)  # Store previous state
    new_values = Column(JSON)  # Store new state
    ip_address = Column(String(45))
    user_agent = Column(String(500))
