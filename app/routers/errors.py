from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.services.errors import ConflictError, LedgerIntegrityError

logger = logging.getLogger(__name__)


@contextmanager
def translate_service_errors(db: Session, failure_detail: str) -> Iterator[None]:
    """Map service exceptions onto HTTP errors; store failures roll back and log as 500."""
    try:
        yield
    except HTTPException:
        raise
    except ConflictError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except LookupError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ValueError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except (SQLAlchemyError, LedgerIntegrityError) as exc:
        db.rollback()
        logger.exception(failure_detail, extra={'error': str(exc)})
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=failure_detail) from exc
