"""
Authentication Module
=====================
Bearer-token verification shared by owner-protected routes.

Usage:
    from auth import AuthenticatedUser, require_user

    @router.post("/{team_code}/init-database")
    async def init(user: AuthenticatedUser = Depends(require_user)): ...
"""

from auth.jwt import AuthenticatedUser, create_access_token, require_user, verify_access_token

__all__ = ["AuthenticatedUser", "create_access_token", "require_user", "verify_access_token"]
