from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.config import settings
from app.db import get_db
from app.dependencies import get_client_ip
from app.models import Principal as PrincipalModel
from app.schemas import LoginRequest
from app.security.passwords import verify_and_upgrade
from app.security.sessions import create_web_session, revoke_web_session
from app.services.audit_service import log_audit, log_auth_event

router = APIRouter(tags=['auth'])

INVALID_LOGIN = 'Invalid username or password'


@router.post('/login')
def login(request: Request, payload: LoginRequest, db: Session = Depends(get_db)):
    username = payload.username.strip()
    ip = get_client_ip(request)
    user_agent = request.headers.get('user-agent')

    principal = db.execute(select(PrincipalModel).where(PrincipalModel.username == username)).scalar_one_or_none()
    failure_reason = None
    upgraded_hash = None
    if not principal:
        failure_reason = 'UNKNOWN_USERNAME'
    elif not principal.active:
        failure_reason = 'INACTIVE_PRINCIPAL'
    else:
        valid, upgraded_hash = verify_and_upgrade(payload.password, principal.password_hash)
        if not valid:
            failure_reason = 'BAD_PASSWORD'

    if failure_reason:
        log_auth_event(
            db,
            attempted_username=username,
            success=False,
            failure_reason=failure_reason,
            principal_id=principal.id if principal else None,
            ip=ip,
            user_agent=user_agent,
        )
        db.commit()
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=INVALID_LOGIN)

    if upgraded_hash:
        principal.password_hash = upgraded_hash
    token = create_web_session(db, principal.id, ip=ip, user_agent=user_agent)
    log_auth_event(
        db,
        attempted_username=username,
        success=True,
        principal_id=principal.id,
        ip=ip,
        user_agent=user_agent,
    )
    log_audit(
        db,
        actor_principal_id=principal.id,
        action='AUTH_LOGIN',
        ip=ip,
        metadata={'username': username},
    )
    db.commit()

    response = JSONResponse(
        {
            'id': principal.id,
            'username': principal.username,
            'role': principal.role.value,
            'warehouse_id': principal.warehouse_id,
        }
    )
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite=settings.session_cookie_samesite,
        max_age=settings.session_ttl_minutes * 60,
    )
    return response


@router.post('/logout')
def logout(request: Request, db: Session = Depends(get_db)):
    principal = getattr(request.state, 'principal', None)
    token = request.cookies.get(settings.session_cookie_name)
    if token:
        revoke_web_session(db, token)

    log_audit(
        db,
        actor_principal_id=principal.id if principal else None,
        action='AUTH_LOGOUT',
        ip=get_client_ip(request),
    )
    db.commit()

    response = JSONResponse({'success': True})
    response.delete_cookie(settings.session_cookie_name)
    return response
