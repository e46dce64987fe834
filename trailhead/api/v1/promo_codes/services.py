"""
Promo code catalog administration and analytics
"""

from typing import Any, Dict, List, Optional
from datetime import datetime, timedelta
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError
from sqlalchemy import select, func, and_, or_, cast, String, desc, asc
from fastapi import Request
import logging
import uuid

from trailhead.core.config import settings
from trailhead.core.exceptions import (
    BadRequestException,
    DuplicateResourceException,
    NotFoundException,
)
from trailhead.models import (
    EventCategory,
    PromoCode,
    PromoCodeStatus,
    PromoCodeType,
    PromoCodeUsage,
)
from trailhead.services.audit_service import AuditService
from trailhead.services.promo_stores import UsageJournal, normalize_code
from trailhead.utils.helpers import ensure_utc, utcnow
from trailhead.utils.pagination import paginate
from .schemas import PromoCodeCreate, PromoCodeResponse, PromoCodeUpdate

logger = logging.getLogger(__name__)

SORTABLE_FIELDS = {
    "createdAt": PromoCode.created_at,
    "created_at": PromoCode.created_at,
    "code": PromoCode.code,
    "value": PromoCode.value,
    "validFrom": PromoCode.valid_from,
    "valid_from": PromoCode.valid_from,
    "validUntil": PromoCode.valid_until,
    "valid_until": PromoCode.valid_until,
    "usageCount": PromoCode.usage_count,
    "usage_count": PromoCode.usage_count,
}

LIST_FIELDS = ("applicable_events", "excluded_events", "applicable_categories", "target_users")

NON_NULLABLE_FIELDS = LIST_FIELDS + ("description", "type", "value", "valid_from", "valid_until", "is_active", "is_public")

def _snapshot(promo: PromoCode) -> Dict[str, Any]:
    return PromoCodeResponse.model_validate(promo).model_dump(mode="json")

def _storable(data: Dict[str, Any]) -> Dict[str, Any]:
    """JSON columns hold plain strings"""
    for field in LIST_FIELDS:
        if field in data and data[field] is not None:
            data[field] = [str(getattr(item, "value", item)) for item in data[field]]
    return data

class PromoCodeAdminService:
    """Admin operations on the promo code catalog"""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditService(db)
        self.usages = UsageJournal(db)

    async def _usage_stats(self, promo_code_ids: List[uuid.UUID]) -> Dict[uuid.UUID, Dict[str, Any]]:
        if not promo_code_ids:
            return {}

        result = await self.db.execute(
            select(
                PromoCodeUsage.promo_code_id,
                func.count(PromoCodeUsage.id),
                func.coalesce(func.sum(PromoCodeUsage.discount_amount), 0),
                func.coalesce(func.sum(PromoCodeUsage.final_amount), 0),
            )
            .where(PromoCodeUsage.promo_code_id.in_(promo_code_ids))
            .group_by(PromoCodeUsage.promo_code_id)
        )
        return {
            row[0]: {
                "total_usage": row[1],
                "total_discount": float(row[2]),
                "total_revenue": float(row[3]),
            }
            for row in result.all()
        }

    async def list_promo_codes(
        self,
        page: int = 1,
        limit: int = 10,
        search: Optional[str] = None,
        type: Optional[PromoCodeType] = None,
        is_active: Optional[bool] = None,
        is_public: Optional[bool] = None,
        category: Optional[EventCategory] = None,
        sort_by: str = "createdAt",
        sort_order: str = "desc"
    ) -> Dict[str, Any]:
        """Get promo codes with filters, pagination and usage stats"""
        stmt = select(PromoCode)
        conditions = []

        if search:
            conditions.append(
                or_(
                    PromoCode.code.ilike(f"%{search}%"),
                    PromoCode.description.ilike(f"%{search}%")
                )
            )
        if type is not None:
            conditions.append(PromoCode.type == type)
        if is_active is not None:
            conditions.append(PromoCode.is_active == is_active)
        if is_public is not None:
            conditions.append(PromoCode.is_public == is_public)
        if category is not None:
            conditions.append(
                cast(PromoCode.applicable_categories, String).like(f'%"{category.value}"%')
            )

        if conditions:
            stmt = stmt.where(and_(*conditions))

        sort_column = SORTABLE_FIELDS.get(sort_by, PromoCode.created_at)
        order = asc if sort_order == "asc" else desc
        stmt = stmt.order_by(order(sort_column), PromoCode.code)

        page_data = await paginate(self.db, stmt, page=page, size=limit)
        stats = await self._usage_stats([promo.id for promo in page_data["items"]])

        items = []
        for promo in page_data["items"]:
            item = PromoCodeResponse.model_validate(promo).model_dump()
            item["stats"] = stats.get(promo.id, {})
            items.append(item)

        return {
            "promo_codes": items,
            "pagination": {
                "page": page_data["page"],
                "limit": page_data["size"],
                "total": page_data["total"],
                "pages": page_data["pages"],
            },
        }

    async def get_promo_code(self, promo_code_id: uuid.UUID) -> PromoCode:
        """Get promo code by ID"""
        promo = await self.db.get(PromoCode, promo_code_id, populate_existing=True)
        if promo is None:
            raise NotFoundException("Promo code not found", error_code="PROMO_CODE_NOT_FOUND")
        return promo

    async def create_promo_code(
        self,
        data: PromoCodeCreate,
        admin: Dict[str, Any],
        request: Optional[Request] = None
    ) -> PromoCode:
        """Create a promo code"""
        code = normalize_code(data.code)
        existing = await self.db.scalar(select(PromoCode.id).where(PromoCode.code == code))
        if existing is not None:
            raise DuplicateResourceException("Promo code", "code", code)

        values = _storable(data.model_dump())
        values["code"] = code
        promo = PromoCode(**values, usage_count=0, created_by=str(admin["id"]))
        self.db.add(promo)

        try:
            await self.db.flush()
        except IntegrityError:
            await self.db.rollback()
            raise DuplicateResourceException("Promo code", "code", code)

        await self.db.refresh(promo)
        await self.audit.log_admin_action(
            admin_id=admin["id"],
            action="create_promo_code",
            entity_type="promo_code",
            entity_id=str(promo.id),
            description=f"Created promo code {code}",
            new_values=_snapshot(promo),
            request=request,
        )
        await self.db.commit()
        await self.db.refresh(promo)

        logger.info("Admin %s created promo code %s", admin["id"], code)
        return promo

    async def update_promo_code(
        self,
        promo_code_id: uuid.UUID,
        data: PromoCodeUpdate,
        admin: Dict[str, Any],
        request: Optional[Request] = None
    ) -> PromoCode:
        """Partially update a promo code"""
        promo = await self.get_promo_code(promo_code_id)
        before = _snapshot(promo)
        changes = _storable(data.model_dump(exclude_unset=True))

        for field in NON_NULLABLE_FIELDS:
            if field in changes and changes[field] is None:
                raise BadRequestException(f"{field} cannot be null")

        valid_from = changes.get("valid_from", ensure_utc(promo.valid_from))
        valid_until = changes.get("valid_until", ensure_utc(promo.valid_until))
        if valid_until <= valid_from:
            raise BadRequestException("Valid until date must be after valid from date")

        promo_type = changes.get("type", promo.type)
        value = changes.get("value", promo.value)
        if promo_type == PromoCodeType.PERCENTAGE and not 0 <= value <= 100:
            raise BadRequestException("Percentage value must be between 0 and 100")

        usage_limit = changes.get("usage_limit", promo.usage_limit)
        if usage_limit is not None and usage_limit < promo.usage_count:
            raise BadRequestException(
                f"Usage limit cannot be lower than current usage ({promo.usage_count})"
            )

        for field, new_value in changes.items():
            setattr(promo, field, new_value)

        await self.db.flush()
        await self.db.refresh(promo)
        await self.audit.log_admin_action(
            admin_id=admin["id"],
            action="update_promo_code",
            entity_type="promo_code",
            entity_id=str(promo.id),
            description=f"Updated promo code {promo.code}",
            old_values=before,
            new_values=_snapshot(promo),
            request=request,
        )
        await self.db.commit()
        await self.db.refresh(promo)
        return promo

    async def delete_promo_code(
        self,
        promo_code_id: uuid.UUID,
        admin: Dict[str, Any],
        request: Optional[Request] = None
    ) -> Optional[PromoCode]:
        """
        Delete a promo code

        Codes with usage history are retired instead so the history stays
        queryable.

        Returns:
            The retired promo code, or None when it was removed
        """
        promo = await self.get_promo_code(promo_code_id)
        before = _snapshot(promo)

        if await self.usages.count_by_code(promo.id) > 0:
            promo.status = PromoCodeStatus.RETIRED
            promo.is_active = False
            promo.retired_at = utcnow()
            await self.db.flush()
            await self.db.refresh(promo)
            await self.audit.log_admin_action(
                admin_id=admin["id"],
                action="retire_promo_code",
                entity_type="promo_code",
                entity_id=str(promo.id),
                description=f"Retired promo code {promo.code} (has usage history)",
                old_values=before,
                new_values=_snapshot(promo),
                request=request,
            )
            await self.db.commit()
            await self.db.refresh(promo)
            logger.info("Admin %s retired promo code %s", admin["id"], promo.code)
            return promo

        await self.db.delete(promo)
        await self.audit.log_admin_action(
            admin_id=admin["id"],
            action="delete_promo_code",
            entity_type="promo_code",
            entity_id=str(promo_code_id),
            description=f"Deleted promo code {before['code']}",
            old_values=before,
            request=request,
        )
        await self.db.commit()
        logger.info("Admin %s deleted promo code %s", admin["id"], before["code"])
        return None

    async def list_usages(
        self,
        promo_code_id: uuid.UUID,
        page: int = 1,
        size: int = 20
    ) -> Dict[str, Any]:
        """Usage history of a promo code, retired ones included"""
        await self.get_promo_code(promo_code_id)

        stmt = (
            select(PromoCodeUsage)
            .where(PromoCodeUsage.promo_code_id == promo_code_id)
            .order_by(PromoCodeUsage.used_at.desc())
        )
        page_data = await paginate(self.db, stmt, page=page, size=size)
        return {
            "usages": page_data["items"],
            "pagination": {
                "page": page_data["page"],
                "limit": page_data["size"],
                "total": page_data["total"],
                "pages": page_data["pages"],
            },
        }

class PromoAnalyticsService:
    """Aggregated promo code usage figures for the admin dashboard"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_analytics(
        self,
        period_days: Optional[int] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        promo_code_id: Optional[uuid.UUID] = None,
        now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        now = now or utcnow()

        if start_date and end_date:
            date_filter = and_(
                PromoCodeUsage.used_at >= ensure_utc(start_date),
                PromoCodeUsage.used_at <= ensure_utc(end_date)
            )
        else:
            days = period_days or settings.PROMO_ANALYTICS_DEFAULT_PERIOD_DAYS
            date_filter = PromoCodeUsage.used_at >= now - timedelta(days=days)

        # Catalog counts
        total_codes = await self.db.scalar(select(func.count(PromoCode.id))) or 0
        active_codes = await self.db.scalar(
            select(func.count(PromoCode.id)).where(
                PromoCode.is_active.is_(True),
                PromoCode.status == PromoCodeStatus.ACTIVE
            )
        ) or 0
        expired_codes = await self.db.scalar(
            select(func.count(PromoCode.id)).where(
                PromoCode.is_active.is_(True),
                PromoCode.valid_until < now
            )
        ) or 0

        # Period totals
        usage_filter = date_filter
        if promo_code_id is not None:
            usage_filter = and_(date_filter, PromoCodeUsage.promo_code_id == promo_code_id)

        totals = (await self.db.execute(
            select(
                func.count(PromoCodeUsage.id),
                func.coalesce(func.sum(PromoCodeUsage.discount_amount), 0),
                func.coalesce(func.sum(PromoCodeUsage.final_amount), 0),
                func.coalesce(func.avg(PromoCodeUsage.discount_amount), 0),
                func.coalesce(func.avg(PromoCodeUsage.original_amount), 0),
            ).where(usage_filter)
        )).one()

        overview = {
            "total_promo_codes": total_codes,
            "active_promo_codes": active_codes,
            "expired_promo_codes": expired_codes,
            "total_usage": totals[0],
            "total_discount": round(float(totals[1]), 2),
            "total_revenue": round(float(totals[2]), 2),
            "average_discount": round(float(totals[3]), 2),
            "average_order_value": round(float(totals[4]), 2),
        }

        return {
            "overview": overview,
            "top_performers": {
                "by_usage": await self._top_performers(date_filter, "usage"),
                "by_discount": await self._top_performers(date_filter, "discount"),
            },
            "daily_trends": await self._daily_trends(date_filter),
            "type_distribution": await self._type_distribution(date_filter),
            "user_engagement": await self._user_engagement(date_filter),
            "recent_activity": await self._recent_activity(date_filter),
        }

    async def _top_performers(self, date_filter, order_by: str) -> List[Dict[str, Any]]:
        usage_count = func.count(PromoCodeUsage.id).label("usage_count")
        total_discount = func.coalesce(func.sum(PromoCodeUsage.discount_amount), 0).label("total_discount")
        total_revenue = func.coalesce(func.sum(PromoCodeUsage.final_amount), 0).label("total_revenue")

        stmt = (
            select(
                PromoCode.id, PromoCode.code, PromoCode.description, PromoCode.type,
                PromoCode.value, usage_count, total_discount, total_revenue
            )
            .join(PromoCodeUsage, PromoCodeUsage.promo_code_id == PromoCode.id)
            .where(date_filter)
            .group_by(
                PromoCode.id, PromoCode.code, PromoCode.description,
                PromoCode.type, PromoCode.value
            )
            .order_by(desc(usage_count if order_by == "usage" else total_discount), PromoCode.code)
            .limit(settings.PROMO_ANALYTICS_TOP_LIMIT)
        )
        result = await self.db.execute(stmt)
        return [
            {
                "promo_code_id": row.id,
                "code": row.code,
                "description": row.description,
                "type": row.type,
                "value": float(row.value),
                "usage_count": row.usage_count,
                "total_discount": round(float(row.total_discount), 2),
                "total_revenue": round(float(row.total_revenue), 2),
            }
            for row in result.all()
        ]

    async def _daily_trends(self, date_filter) -> List[Dict[str, Any]]:
        day = func.date(PromoCodeUsage.used_at).label("day")
        stmt = (
            select(
                day,
                func.count(PromoCodeUsage.id),
                func.coalesce(func.sum(PromoCodeUsage.discount_amount), 0),
                func.coalesce(func.sum(PromoCodeUsage.final_amount), 0),
            )
            .where(date_filter)
            .group_by(day)
            .order_by(day)
        )
        result = await self.db.execute(stmt)
        return [
            {
                "date": str(row[0]),
                "usage_count": row[1],
                "total_discount": round(float(row[2]), 2),
                "total_revenue": round(float(row[3]), 2),
            }
            for row in result.all()
        ]

    async def _type_distribution(self, date_filter) -> List[Dict[str, Any]]:
        stmt = (
            select(
                PromoCode.type,
                func.count(PromoCodeUsage.id),
                func.coalesce(func.sum(PromoCodeUsage.discount_amount), 0),
            )
            .join(PromoCodeUsage, PromoCodeUsage.promo_code_id == PromoCode.id)
            .where(date_filter)
            .group_by(PromoCode.type)
        )
        result = await self.db.execute(stmt)
        return [
            {"type": row[0], "count": row[1], "total_discount": round(float(row[2]), 2)}
            for row in result.all()
        ]

    async def _user_engagement(self, date_filter) -> Dict[str, Any]:
        row = (await self.db.execute(
            select(
                func.count(func.distinct(PromoCodeUsage.user_id)),
                func.count(PromoCodeUsage.id),
            ).where(date_filter)
        )).one()
        unique_users, total = row[0] or 0, row[1] or 0
        return {
            "unique_users": unique_users,
            "average_usage_per_user": round(total / unique_users, 2) if unique_users else 0.0,
        }

    async def _recent_activity(self, date_filter) -> List[Dict[str, Any]]:
        stmt = (
            select(PromoCodeUsage, PromoCode.code)
            .join(PromoCode, PromoCode.id == PromoCodeUsage.promo_code_id)
            .where(date_filter)
            .order_by(PromoCodeUsage.used_at.desc())
            .limit(settings.PROMO_ANALYTICS_RECENT_LIMIT)
        )
        result = await self.db.execute(stmt)
        return [
            {
                "id": usage.id,
                "code": code,
                "user_id": usage.user_id,
                "booking_id": usage.booking_id,
                "used_at": usage.used_at,
                "discount": float(usage.discount_amount),
                "final_amount": float(usage.final_amount),
            }
            for usage, code in result.all()
        ]
