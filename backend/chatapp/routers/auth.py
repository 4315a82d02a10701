import logging

from fastapi import APIRouter, Depends, HTTPException, Response

from ..auth import create_access_token, token_lifetime_seconds
from ..deps import Services, get_current_user, get_services
from ..models import User
from ..schemas import AuthResponse, LoginIn, RegisterIn, TokenVerification, UserCreate, UserOut

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


def auth_response(user: User) -> AuthResponse:
    return AuthResponse(
        access_token=create_access_token(str(user.id), user.email),
        expires_in=token_lifetime_seconds(),
        user=UserOut.model_validate(user),
    )


@router.post("/register", response_model=AuthResponse, status_code=201)
async def register(payload: RegisterIn, services: Services = Depends(get_services)):
    user = await services.users.create(
        UserCreate(
            email=payload.email,
            first_name=payload.first_name,
            last_name=payload.last_name,
            password=payload.password,
            is_active=True,
        )
    )
    return auth_response(user)


@router.post("/login", response_model=AuthResponse)
async def login(payload: LoginIn, services: Services = Depends(get_services)):
    user = await services.users.authenticate(payload.email, payload.password)
    if not user:
        logger.info("Failed login for %s", payload.email)
        raise HTTPException(status_code=401, detail="Invalid email or password")
    if not user.is_active:
        raise HTTPException(status_code=401, detail="Account deactivated")
    return auth_response(user)


@router.get("/profile", response_model=UserOut)
async def profile(user: User = Depends(get_current_user)):
    return user


@router.post("/logout", status_code=204)
async def logout(user: User = Depends(get_current_user)):
    # tokens are stateless; nothing to revoke server-side
    logger.info("User %s logged out", user.id)
    return Response(status_code=204)


@router.post("/refresh", response_model=AuthResponse)
async def refresh(user: User = Depends(get_current_user)):
    return auth_response(user)


@router.get("/verify", response_model=TokenVerification)
async def verify(user: User = Depends(get_current_user)):
    return TokenVerification(valid=True, user=UserOut.model_validate(user))
