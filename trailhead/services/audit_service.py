"""Audit logging service"""

from typing import Dict, Any, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from fastapi import Request

from trailhead.models import AdminLog

class AuditService:
    """Service for logging admin actions"""
    
    def __init__(self, db: AsyncSession):
        self.db = db
        
    async def log_admin_action(
        self,
        admin_id: str,
        action: str,
        entity_type: str,
        entity_id: str,
        description: Optional[str] = None,
        old_values: Optional[Dict[str, Any]] = None,
        new_values: Optional[Dict[str, Any]] = None,
        request: Optional[Request] = None
    ) -> AdminLog:
        """
        Record an admin action in the caller's transaction
        
        The entry is flushed, not committed, so it lands together with the
        change it describes.
        """
        ip_address = None
        user_agent = None
        
        if request is not None:
            forwarded = request.headers.get("X-Forwarded-For")
            if forwarded:
                ip_address = forwarded.split(",")[0].strip()
            elif request.client:
                ip_address = request.client.host
            user_agent = request.headers.get("User-Agent")
            
        log = AdminLog(
            admin_id=str(admin_id),
            action=action,
            entity_type=entity_type,
            entity_id=str(entity_id),
            description=description,
            old_values=old_values,
            new_values=new_values,
            ip_address=ip_address,
            user_agent=user_agent
        )
        
        self.db.add(log)
        await self.db.flush()
        
        return log
        
