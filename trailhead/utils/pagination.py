"""
Pagination utilities
"""

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import Select

async def paginate(
    db: AsyncSession,
    query: Select,
    page: int = 1,
    size: int = 10
) -> dict:
    """
    Paginate query results
    
    Args:
        db: Database session
        query: SQLAlchemy query
        page: Page number
        size: Page size
        
    Returns:
        Dictionary with pagination data
    """
    # Get total count
    count_query = select(func.count()).select_from(query.order_by(None).subquery())
    total = await db.scalar(count_query) or 0
    
    # Calculate pages
    pages = (total + size - 1) // size
    
    # Apply pagination
    offset = (page - 1) * size
    query = query.offset(offset).limit(size)
    
    # Execute query
    result = await db.execute(query)
    items = list(result.scalars().all())
    
    return {
        "items": items,
        "total": total,
        "page": page,
        "size": size,
        "pages": pages
    }
