from __future__ import annotations

from dataclasses import dataclass

from app.models import PrincipalRole


@dataclass(frozen=True)
class PermissionDef:
    id: str
    label: str
    category: str


ALL_PERMISSIONS: tuple[PermissionDef, ...] = (
    PermissionDef('dashboard', 'Dashboard', 'Main'),
    PermissionDef('finances', 'Finances', 'Main'),
    PermissionDef('clients', 'Clients', 'Main'),
    PermissionDef('projects', 'Projects', 'Main'),
    PermissionDef('production', 'Production', 'Main'),
    PermissionDef('management', 'Management', 'Main'),
    PermissionDef('history', 'History', 'Main'),
    PermissionDef('suppliers', 'Suppliers', 'Main'),
    PermissionDef('warehouse', 'Warehouse', 'Main'),
    PermissionDef('documents', 'Documents', 'Main'),
    PermissionDef('calendar', 'Calendar', 'Main'),
    PermissionDef('trash', 'Trash', 'Main'),
    PermissionDef('settings', 'Settings', 'Admin'),
    PermissionDef('users', 'User management', 'Admin'),
    PermissionDef('roles', 'Role management', 'Admin'),
)

PERMISSION_IDS = frozenset(p.id for p in ALL_PERMISSIONS)

DEFAULT_ROLE_PERMISSIONS: dict[PrincipalRole, frozenset[str]] = {
    PrincipalRole.ADMINISTRATOR: PERMISSION_IDS,
    PrincipalRole.MANAGER: frozenset(
        {
            'dashboard',
            'finances',
            'clients',
            'projects',
            'production',
            'management',
            'history',
            'suppliers',
            'warehouse',
            'documents',
            'calendar',
            'trash',
            'settings',
        }
    ),
    PrincipalRole.USER: frozenset(
        {'dashboard', 'clients', 'projects', 'production', 'management', 'warehouse', 'calendar'}
    ),
    PrincipalRole.VIEWER: frozenset({'dashboard', 'projects', 'calendar'}),
}


def permissions_for_role(role: PrincipalRole) -> frozenset[str]:
    return DEFAULT_ROLE_PERMISSIONS.get(role, frozenset())


def permissions_by_category() -> dict[str, list[PermissionDef]]:
    grouped: dict[str, list[PermissionDef]] = {}
    for perm in ALL_PERMISSIONS:
        grouped.setdefault(perm.category, []).append(perm)
    return grouped
