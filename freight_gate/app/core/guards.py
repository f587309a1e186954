"""
Security guards for role-based and ownership-based access control.

Provides dependencies for protecting endpoints.
"""

from typing import List
from fastapi import Depends, HTTPException, status
from freight_gate.app.models.enums import UserRole
from freight_gate.app.core.dependencies import get_current_user


def require_role(allowed_roles: List[UserRole]):
    """
    Dependency factory for role-based access control.

    Usage:
        @router.post("/admin/checkpoint-requests/{request_id}/approve")
        async def approve(current_user: dict = Depends(require_role([UserRole.ADMIN]))):
            ...

    Raises:
        HTTPException 403 if user role is not in allowed_roles
    """
    async def role_checker(current_user: dict = Depends(get_current_user)) -> dict:
        user_role_str = current_user.get("role")

        if not user_role_str:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Role information missing from token"
            )

        try:
            user_role = UserRole(user_role_str)
        except ValueError:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Invalid role in token"
            )

        if user_role not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required role: {', '.join([r.value for r in allowed_roles])}"
            )

        return current_user

    return role_checker


require_admin = require_role([UserRole.ADMIN])
require_carrier = require_role([UserRole.CARRIER])


def verify_ownership(resource_owner_id: int, current_user: dict) -> bool:
    """
    Verify that the current user may act on a carrier-owned resource.

    Admins can see everything; carriers only their own shipments.
    """
    if current_user.get("role") == UserRole.ADMIN.value:
        return True
    return current_user.get("user_id") == resource_owner_id


class OwnershipGuard:
    """
    Class-based ownership guard for carrier-owned shipments.

    Usage:
        ownership_guard = OwnershipGuard()
        shipment = await get_shipment_or_404(db, shipment_id)
        ownership_guard.enforce(shipment.carrier_id, current_user, "shipment")
    """

    def enforce(
        self,
        resource_owner_id: int,
        current_user: dict,
        resource_name: str = "resource"
    ):
        """
        Raise 403 unless the current user owns the resource or is an admin.
        """
        if not verify_ownership(resource_owner_id, current_user):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. You do not have permission to access this {resource_name}."
            )
