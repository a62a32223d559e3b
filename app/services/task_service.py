from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models import NotificationType, Project, RelatedType, Task, TaskPriority, TaskStatus
from app.services.notification_service import create_notification
from app.services.snapshot import decode_list_field, encode_list_field


def get_task(db: Session, *, task_id: int) -> Task:
    task = db.get(Task, task_id)
    if not task or task.is_deleted:
        raise ValueError('Task not found')
    return task


def list_tasks(db: Session, *, project_id: int | None = None, status: TaskStatus | None = None) -> list[Task]:
    query = (
        select(Task)
        .where(Task.is_deleted.is_(False))
        .order_by(Task.due_date.is_(None), Task.due_date.asc(), Task.created_at.desc())
    )
    if project_id:
        query = query.where(Task.project_id == project_id)
    if status:
        query = query.where(Task.status == status)
    return list(db.execute(query).scalars())


def create_task(
    db: Session,
    *,
    project_id: int,
    title: str,
    description: str | None = None,
    status: TaskStatus = TaskStatus.TODO,
    priority: TaskPriority = TaskPriority.MEDIUM,
    due_date: date | None = None,
    subtasks: Any = None,
    checklist: Any = None,
) -> Task:
    project = db.get(Project, project_id)
    if not project or project.is_deleted:
        raise ValueError('Project not found')
    title = title.strip()
    if not title:
        raise ValueError('Task title is required')
    task = Task(
        project_id=project_id,
        title=title,
        description=description or None,
        status=status,
        priority=priority,
        due_date=due_date,
        subtasks=encode_list_field(subtasks),
        checklist=encode_list_field(checklist),
    )
    db.add(task)
    db.flush()
    create_notification(
        db,
        type=NotificationType.TASK_CREATED,
        title='New task',
        message=f'{task.title} ({project.name})',
        related_id=task.id,
        related_type=RelatedType.TASK,
    )
    return task


def update_task(db: Session, *, task_id: int, **fields: Any) -> Task:
    task = get_task(db, task_id=task_id)
    for key, value in fields.items():
        if key in {'subtasks', 'checklist'}:
            setattr(task, key, encode_list_field(value))
        elif key == 'title':
            if not value or not value.strip():
                raise ValueError('Task title is required')
            task.title = value.strip()
        elif key in {'description', 'status', 'priority', 'due_date'}:
            setattr(task, key, value)
        else:
            raise ValueError(f'Unknown task field: {key}')
    db.flush()
    return task


def set_status(db: Session, *, task_id: int, status: TaskStatus) -> Task:
    return update_task(db, task_id=task_id, status=status)


def toggle_checklist_item(db: Session, *, task_id: int, item_id: str | int) -> Task:
    task = get_task(db, task_id=task_id)
    checklist = decode_list_field(task.checklist) or []
    for item in checklist:
        if isinstance(item, dict) and str(item.get('id')) == str(item_id):
            item['completed'] = not item.get('completed', False)
            break
    else:
        raise ValueError('Checklist item not found')
    task.checklist = encode_list_field(checklist)
    db.flush()
    return task


def delete_task(db: Session, *, task_id: int) -> None:
    task = get_task(db, task_id=task_id)
    task.is_deleted = True
    task.deleted_at = datetime.now(tz=timezone.utc)
    db.flush()
