# /app/utils/pagination_util.py
from flask import current_app
from app.extensions import db

def page_size(limit):
    """Clamps a requested page size to MAX_PAGE_SIZE."""
    return max(1, min(int(limit), current_app.config.get('MAX_PAGE_SIZE', 100)))

def pagination_meta(total, page, limit):
    total_pages = (total + limit - 1) // limit if total else 0
    return {
        'total': total,
        'page': page,
        'limit': limit,
        'total_pages': total_pages,
        'has_next_page': page < total_pages,
        'has_prev_page': page > 1,
    }

def paginate_select(stmt, page, limit):
    """Runs a select for one page and returns ``(items, pagination)``."""
    limit = page_size(limit)
    result = db.paginate(stmt, page=page, per_page=limit, max_per_page=limit, error_out=False)
    return result.items, pagination_meta(result.total or 0, page, limit)
