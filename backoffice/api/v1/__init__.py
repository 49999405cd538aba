"""
API v1 Router

Org-scoped endpoints are prefixed with /orgs/{org_id}.
"""

from fastapi import APIRouter

from . import invitations, members, organizations, users

router = APIRouter()

router.include_router(organizations.router, prefix="/orgs", tags=["Organizations"])
router.include_router(members.router, prefix="/orgs", tags=["Members"])
router.include_router(invitations.router_scoped, prefix="/orgs", tags=["Invitations"])
router.include_router(invitations.router_global, prefix="/invitations", tags=["Invitations"])
router.include_router(users.router, prefix="/users", tags=["Users"])


@router.get("/", tags=["API"])
async def api_root():
    """API root - returns version and available endpoints."""
    return {
        "api": "v1",
        "version": "0.1.0",
        "endpoints": [
            "/orgs",
            "/orgs/{org_id}/members",
            "/orgs/{org_id}/invitations",
            "/invitations/{invitation_id}/accept",
            "/users",
        ],
    }
