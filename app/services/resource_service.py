from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models import Resource, ResourceType
from app.services.project_service import get_project

LINK_SCHEMES = ('http://', 'https://')


def list_resources(db: Session, *, project_id: int, folder: str | None = None) -> list[Resource]:
    query = (
        select(Resource)
        .where(Resource.project_id == project_id, Resource.is_deleted.is_(False))
        .order_by(Resource.created_at.desc(), Resource.id.desc())
    )
    if folder:
        query = query.where(Resource.folder == folder)
    return list(db.execute(query).scalars())


def list_folders(db: Session, *, project_id: int) -> list[str]:
    return list(
        db.execute(
            select(Resource.folder)
            .where(Resource.project_id == project_id, Resource.is_deleted.is_(False), Resource.folder.is_not(None))
            .distinct()
            .order_by(Resource.folder.asc())
        ).scalars()
    )


def get_resource(db: Session, *, resource_id: int) -> Resource:
    resource = db.get(Resource, resource_id)
    if not resource or resource.is_deleted:
        raise ValueError('Resource not found')
    return resource


def create_resource(
    db: Session,
    *,
    project_id: int,
    name: str,
    type: ResourceType,
    folder: str | None = None,
    content_url: str | None = None,
    content: bytes | None = None,
) -> Resource:
    """Links keep only their URL; files and images keep only their bytes."""
    get_project(db, project_id=project_id)
    name = name.strip()
    if not name:
        raise ValueError('Resource name is required')

    if type == ResourceType.LINK:
        content_url = (content_url or '').strip()
        if not content_url.startswith(LINK_SCHEMES):
            raise ValueError('Link must start with http:// or https://')
        content = None
    else:
        if not content:
            raise ValueError('Choose a file to upload')
        content_url = None

    resource = Resource(
        project_id=project_id,
        name=name,
        type=type,
        folder=(folder or '').strip() or None,
        content_url=content_url,
        content_blob=content,
    )
    db.add(resource)
    db.flush()
    return resource


def delete_resource(db: Session, *, resource_id: int) -> Resource:
    resource = get_resource(db, resource_id=resource_id)
    resource.is_deleted = True
    resource.deleted_at = datetime.now(tz=timezone.utc)
    db.flush()
    return resource
