# database.py
from databases import Database
from sqlalchemy import create_engine, MetaData

from hcs_booking.config import DATABASE_URL

# Create the core database objects
database = Database(DATABASE_URL)
metadata = MetaData()
engine = create_engine(DATABASE_URL)


def row_to_dict(row):
    if row is None:
        return None
    return {key: row[key] for key in row._mapping.keys()}


def paginate(total: int, page: int, limit: int) -> dict:
    total_pages = (total + limit - 1) // limit if limit else 0
    return {
        "page": page,
        "limit": limit,
        "total_pages": total_pages,
        "total": total,
        "has_next": page < total_pages,
        "has_prev": page > 1,
    }


def page_window(page: int, limit: int, max_limit: int = 100):
    """Clamp paging input and return (page, limit, offset)."""
    page = max(1, page or 1)
    limit = min(max(1, limit or 1), max_limit)
    return page, limit, (page - 1) * limit
