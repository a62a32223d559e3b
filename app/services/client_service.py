from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models import Client, ClientCategory


def _clean(value: str | None) -> str | None:
    return value.strip() if value and value.strip() else None


def list_clients(db: Session, *, category_id: int | None = None) -> list[Client]:
    query = select(Client).where(Client.is_deleted.is_(False)).order_by(Client.name.asc())
    if category_id:
        query = query.where(Client.category_id == category_id)
    return list(db.execute(query).scalars())


def list_categories(db: Session) -> list[ClientCategory]:
    return list(db.execute(select(ClientCategory).order_by(ClientCategory.name.asc())).scalars())


def get_client(db: Session, *, client_id: int) -> Client:
    client = db.get(Client, client_id)
    if not client or client.is_deleted:
        raise ValueError('Client not found')
    return client


def _ensure_category(db: Session, category_id: int | None) -> None:
    if category_id and not db.get(ClientCategory, category_id):
        raise ValueError('Client category not found')


def create_client(
    db: Session,
    *,
    name: str,
    email: str | None = None,
    phone: str | None = None,
    notes: str | None = None,
    color: str | None = None,
    category_id: int | None = None,
) -> Client:
    name = name.strip()
    if not name:
        raise ValueError('Client name is required')
    _ensure_category(db, category_id)
    client = Client(
        name=name,
        email=_clean(email),
        phone=_clean(phone),
        notes=_clean(notes),
        color=_clean(color),
        category_id=category_id or None,
    )
    db.add(client)
    db.flush()
    return client


def update_client(
    db: Session,
    *,
    client_id: int,
    name: str,
    email: str | None,
    phone: str | None,
    notes: str | None,
    color: str | None,
    category_id: int | None,
) -> Client:
    client = get_client(db, client_id=client_id)
    name = name.strip()
    if not name:
        raise ValueError('Client name is required')
    _ensure_category(db, category_id)
    client.name = name
    client.email = _clean(email)
    client.phone = _clean(phone)
    client.notes = _clean(notes)
    client.color = _clean(color)
    client.category_id = category_id or None
    db.flush()
    return client


def delete_client(db: Session, *, client_id: int) -> None:
    client = get_client(db, client_id=client_id)
    client.is_deleted = True
    client.deleted_at = datetime.now(tz=timezone.utc)
    db.flush()


def create_category(db: Session, *, name: str) -> ClientCategory:
    name = name.strip()
    if not name:
        raise ValueError('Category name is required')
    category = ClientCategory(name=name)
    db.add(category)
    db.flush()
    return category
