from enum import Enum

from .models import StaffMember, StaffRole


class Area(str, Enum):
    """Role-scoped areas of the API, matched by URL prefix."""
    ADMIN = "admin"
    WAITER = "waiter"


AREA_ROLES = {
    Area.ADMIN: StaffRole.admin,
    Area.WAITER: StaffRole.waiter,
}


class PermissionService:
    @staticmethod
    def has_tenant_binding(staff: StaffMember | None, tenant_id: int | None) -> bool:
        """A profile must exist, be bound to a tenant, and match the session's tenant."""
        if staff is None or staff.tenant_id is None or tenant_id is None:
            return False
        return staff.tenant_id == tenant_id

    @staticmethod
    def can_enter(staff: StaffMember | None, tenant_id: int | None, area: Area) -> bool:
        if not PermissionService.has_tenant_binding(staff, tenant_id):
            return False
        return staff.role == AREA_ROLES[area]

    @staticmethod
    def home_path(role: StaffRole) -> str:
        return "/admin" if role == StaffRole.admin else "/waiter"
