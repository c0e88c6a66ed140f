"""Auth API — registration, login, current user.

Learn: Routes for user authentication:
- POST /auth/register → create a customer account
- POST /auth/login → username/password → bearer token + user
- GET /auth/me → current user info
"""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ticketrelay.api.deps import user_svc
from ticketrelay.auth.dependencies import CurrentIdentity, get_current_user
from ticketrelay.auth.jwt import create_access_token
from ticketrelay.schemas.ticket import UserRead
from ticketrelay.services.user_service import UserService

router = APIRouter(prefix="/auth")


# ─── Schemas ─────────────────────────────────────────────


class RegisterRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=100)
    name: str = Field(..., min_length=1, max_length=100)
    password: str = Field(..., min_length=1)
    address: Optional[str] = None


class RegisterResponse(BaseModel):
    username: str
    name: str

    model_config = {"from_attributes": True}


class LoginRequest(BaseModel):
    username: str
    password: str


class LoginResponse(BaseModel):
    token: str
    user: UserRead


# ─── Routes ──────────────────────────────────────────────


@router.post("/register", response_model=RegisterResponse, status_code=201)
async def register(body: RegisterRequest, svc: UserService = Depends(user_svc)):
    """Create a new customer account."""
    return await svc.register(
        username=body.username,
        name=body.name,
        password=body.password,
        address=body.address,
    )


@router.post("/login", response_model=LoginResponse)
async def login(body: LoginRequest, svc: UserService = Depends(user_svc)):
    """Login with username and password → bearer token."""
    user = await svc.authenticate(body.username, body.password)
    token = create_access_token(user.id, user.username, user.role)
    return LoginResponse(token=token, user=UserRead.model_validate(user))


@router.get("/me", response_model=UserRead)
async def get_me(
    identity: CurrentIdentity = Depends(get_current_user),
    svc: UserService = Depends(user_svc),
):
    return await svc.get_user(identity.user_id)
