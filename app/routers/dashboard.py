from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from app.auth import Principal, require_permission
from app.db import get_db
from app.forms import parse_date_filter
from app.security.csrf import verify_csrf
from app.services.dashboard_service import get_dashboard_stats
from app.services.finance_service import get_financial_stats
from app.services.notification_service import list_notifications, mark_all_read, mark_read

router = APIRouter(tags=['dashboard'])


@router.get('/')
def home(
    request: Request,
    principal: Principal = Depends(require_permission('dashboard')),
    db: Session = Depends(get_db),
):
    return request.app.state.templates.TemplateResponse(
        'dashboard.html',
        {
            'request': request,
            'principal': principal,
            'stats': get_dashboard_stats(db),
            'notifications': list_notifications(db, unread_only=True, limit=10),
        },
    )


@router.get('/finances')
def finances_page(
    request: Request,
    principal: Principal = Depends(require_permission('finances')),
    db: Session = Depends(get_db),
):
    from_raw = request.query_params.get('from', '')
    to_raw = request.query_params.get('to', '')
    try:
        stats = get_financial_stats(db, date_from=parse_date_filter(from_raw), date_to=parse_date_filter(to_raw))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return request.app.state.templates.TemplateResponse(
        'finances.html',
        {
            'request': request,
            'principal': principal,
            'stats': stats,
            'from_date': from_raw,
            'to_date': to_raw,
        },
    )


@router.post('/notifications/{notification_id}/read')
def notification_read(
    notification_id: int,
    _principal: Principal = Depends(require_permission('dashboard')),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        mark_read(db, notification_id=notification_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    db.commit()
    return RedirectResponse('/', status_code=303)


@router.post('/notifications/read-all')
def notifications_read_all(
    _principal: Principal = Depends(require_permission('dashboard')),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    mark_all_read(db)
    db.commit()
    return RedirectResponse('/', status_code=303)
