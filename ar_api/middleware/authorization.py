from fastapi import Depends, HTTPException, status

from ar_api.middleware.auth import get_current_user

ADMIN_ROLES = ("admin",)
MANAGER_ROLES = ("admin", "manager", "developer")
COLLECTION_ROLES = ("admin", "manager", "collector", "secretary", "developer")
READ_ROLES = COLLECTION_ROLES + ("viewer",)


def require_roles(*allowed_roles: str):
    """
    FastAPI dependency factory for role-based access control.

    Usage:
        @router.post("/tickets/{ticket_id}/merge")
        async def merge(
            current_user: dict = Depends(get_current_user),
            _auth: None = Depends(require_roles("admin", "manager")),
        ):
    """
    async def check_role(current_user: dict = Depends(get_current_user)):
        if current_user["role"] not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={
                    "error": {
                        "code": "INSUFFICIENT_PERMISSIONS",
                        "message": (
                            f"Role '{current_user['role']}' cannot perform this action. "
                            f"Required: {allowed_roles}"
                        ),
                    }
                },
            )
        return None

    return check_role


def check_self_or_admin(current_user: dict, user_id: str):
    """Profiles can be read by their owner or an admin."""
    if current_user["role"] not in MANAGER_ROLES and str(current_user["user_id"]) != str(user_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "error": {
                    "code": "INSUFFICIENT_PERMISSIONS",
                    "message": "You can only access your own profile",
                }
            },
        )
