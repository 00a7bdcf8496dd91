import logging

from fastapi import APIRouter, Depends, HTTPException

from homeserve.auth import check_credentials, create_access_token, require_actor
from homeserve.models import Actor, AuthLoginRequest, AuthLoginResponse, AuthMeResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=AuthLoginResponse)
def login(payload: AuthLoginRequest):
    user_id = payload.user_id.strip()
    if not user_id:
        raise HTTPException(status_code=400, detail="user_id is required")
    if not check_credentials(user_id, payload.password, payload.role):
        logger.info("Rejected %s login for %s", payload.role.value, user_id)
        raise HTTPException(status_code=401, detail="Invalid credentials")
    token, expires_at = create_access_token(user_id=user_id, role=payload.role)
    return AuthLoginResponse(access_token=token, user_id=user_id, role=payload.role, expires_at=expires_at)


@router.get("/me", response_model=AuthMeResponse)
def me(actor: Actor = Depends(require_actor)):
    return AuthMeResponse(user_id=actor.user_id, role=actor.role)
