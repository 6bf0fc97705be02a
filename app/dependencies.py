from dataclasses import dataclass

from fastapi import HTTPException, Request

from app.config import settings


@dataclass(frozen=True)
class PageParams:
    page: int
    limit: int

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


def get_client_ip(request: Request) -> str | None:
    forwarded_for = request.headers.get('x-forwarded-for')
    if forwarded_for:
        return forwarded_for.split(',')[0].strip()
    if request.client:
        return request.client.host
    return None


def get_page_params(request: Request) -> PageParams:
    page_raw = request.query_params.get('page', '1').strip()
    limit_raw = request.query_params.get('limit', str(settings.default_page_size)).strip()
    if not page_raw.isdigit() or not limit_raw.isdigit():
        raise HTTPException(status_code=400, detail='Invalid pagination parameters')
    page = max(int(page_raw), 1)
    limit = min(max(int(limit_raw), 1), settings.max_page_size)
    return PageParams(page=page, limit=limit)


def paginated(items: list, params: PageParams) -> dict:
    total = len(items)
    return {
        'data': items[params.offset : params.offset + params.limit],
        'pagination': {
            'page': params.page,
            'limit': params.limit,
            'total': total,
            'total_pages': (total + params.limit - 1) // params.limit,
            'has_next': params.offset + params.limit < total,
        },
    }
