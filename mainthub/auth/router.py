import structlog
from fastapi import APIRouter, Depends, status

from ..deps import get_auth_service, ok
from ..schemas.auth import LoginRequest, RefreshRequest, RegisterRequest
from ..schemas.users import UserRead
from .security import get_current_user
from .service import AuthService


router = APIRouter(prefix="/auth", tags=["auth"])

log = structlog.get_logger(__name__)


@router.post("/login")
def login(req: LoginRequest, auth: AuthService = Depends(get_auth_service)):
    return ok(auth.login(req.email, req.password), "Login successful")


@router.post("/register", status_code=status.HTTP_201_CREATED)
def register(req: RegisterRequest, auth: AuthService = Depends(get_auth_service)):
    return ok(auth.register(req.email, req.name, req.password), "User registered")


@router.post("/refresh")
def refresh(req: RefreshRequest, auth: AuthService = Depends(get_auth_service)):
    return ok(auth.refresh(req.refresh_token))


@router.post("/logout")
def logout(user: UserRead = Depends(get_current_user)):
    # tokens are stateless; the client drops them
    log.info("logout", user_id=str(user.id))
    return ok(message="Logged out")


@router.get("/me")
def me(user: UserRead = Depends(get_current_user)):
    return ok(user)
