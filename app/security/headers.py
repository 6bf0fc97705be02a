from fastapi import FastAPI, Request
from starlette.responses import Response

API_PREFIX = '/api/'
STATIC_HEADERS = {
    'X-Robots-Tag': 'noindex, nofollow, noarchive',
    'X-Content-Type-Options': 'nosniff',
    'X-Frame-Options': 'DENY',
}


def install_security_headers(app: FastAPI) -> None:
    @app.middleware('http')
    async def add_security_headers(request: Request, call_next):
        response: Response = await call_next(request)
        for name, value in STATIC_HEADERS.items():
            response.headers[name] = value
        # Ledger reads are point-in-time; never let a proxy serve a stale balance.
        if request.url.path.startswith(API_PREFIX):
            response.headers['Cache-Control'] = 'no-store'
        return response
