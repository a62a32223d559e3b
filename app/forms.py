from __future__ import annotations

from datetime import date
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import TypeVar

from fastapi import HTTPException
from starlette.datastructures import FormData

E = TypeVar('E', bound=Enum)


def form_text(form: FormData, key: str) -> str | None:
    value = str(form.get(key, '') or '').strip()
    return value or None


def form_int(form: FormData, key: str) -> int | None:
    raw = form_text(form, key)
    if raw is None or raw in {'0', 'none'}:
        return None
    if not raw.isdigit():
        raise HTTPException(status_code=400, detail=f'Invalid {key}')
    return int(raw)


def form_ints(form: FormData, key: str) -> tuple[int, ...]:
    values = []
    for raw in form.getlist(key):
        raw = str(raw).strip()
        if not raw:
            continue
        if not raw.isdigit():
            raise HTTPException(status_code=400, detail=f'Invalid {key}')
        values.append(int(raw))
    return tuple(values)


def form_decimal(form: FormData, key: str, *, default: Decimal | None = None) -> Decimal | None:
    raw = form_text(form, key)
    if raw is None:
        return default
    try:
        return Decimal(raw.replace(',', '.'))
    except InvalidOperation as exc:
        raise HTTPException(status_code=400, detail=f'Invalid {key}') from exc


def form_date(form: FormData, key: str) -> date | None:
    raw = form_text(form, key)
    if raw is None:
        return None
    try:
        return date.fromisoformat(raw)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f'Invalid {key}') from exc


def form_enum(form: FormData, key: str, enum_cls: type[E], *, default: E | None = None) -> E | None:
    raw = form_text(form, key)
    if raw is None:
        return default
    try:
        return enum_cls(raw)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f'Invalid {key}') from exc


def parse_date_filter(raw: str) -> date | None:
    raw = raw.strip()
    if not raw:
        return None
    try:
        return date.fromisoformat(raw)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail='Invalid date filter') from exc
