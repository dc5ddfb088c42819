"""Authentication API — admin login + bearer-token dependency."""

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from abengine.schemas import LoginRequest, TokenResponse
from abengine.services.auth import authenticate_admin, create_access_token, decode_token

router = APIRouter(prefix="/auth", tags=["auth"])
security = HTTPBearer()


async def require_admin(creds: HTTPAuthorizationCredentials = Depends(security)) -> str:
    """Return the admin's email from a valid token, else 401."""
    payload = decode_token(creds.credentials)
    if payload is None:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid or expired token")
    if payload.get("role") != "admin" or not payload.get("sub"):
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Administrator access required")
    return payload["sub"]


@router.post("/login", response_model=TokenResponse)
async def login(data: LoginRequest):
    if not authenticate_admin(data.email, data.password):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid email or password")
    return TokenResponse(access_token=create_access_token(data.email))


@router.get("/me")
async def me(email: str = Depends(require_admin)):
    return {"email": email, "role": "admin"}
