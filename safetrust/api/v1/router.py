"""API v1 router - includes all v1 endpoints."""

from fastapi import APIRouter

from safetrust.api.v1.endpoints import admin_mfa, health, mfa

api_router = APIRouter()

api_router.include_router(health.router, prefix="", tags=["Health"])
api_router.include_router(mfa.router, prefix="/auth/mfa", tags=["MFA"])
api_router.include_router(admin_mfa.router, prefix="/admin", tags=["Admin MFA"])
