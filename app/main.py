from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse

from app.auth import get_current_principal
from app.logging_config import configure_logging
from app.routers import auth, inventory, reconciliation, transactions, warehouses
from app.security.headers import install_security_headers
from app.security.sessions import install_auth_session_middleware

configure_logging()

app = FastAPI(title='Warehouse Ledger Portal')

install_security_headers(app)
install_auth_session_middleware(app)

app.include_router(auth.router)
app.include_router(inventory.router)
app.include_router(transactions.router)
app.include_router(warehouses.router)
app.include_router(reconciliation.router)


@app.get('/')
def root(request: Request):
    principal = get_current_principal(request)
    return {
        'username': principal.username,
        'role': principal.role.value,
        'warehouse_id': principal.warehouse_id,
    }


@app.get('/robots.txt', response_class=PlainTextResponse)
def robots_txt() -> str:
    return 'User-agent: *\nDisallow: /\n'
