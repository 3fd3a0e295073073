import logging

from fastapi import APIRouter, Depends
from fastapi.security import OAuth2PasswordRequestForm

from app.api.dependencies import get_current_user
from app.models.response import ApiResponse
from app.models.token import TokenResponse
from app.models.user import PasswordChange, PasswordResetRequest, UserCreate, UserLogin, UserResponse
from app.services.user_service import UserService, user_service

router = APIRouter()
logger = logging.getLogger(__name__)


def get_user_service() -> UserService:
    """Dependency to get UserService"""
    return user_service


@router.post("/signup", response_model=ApiResponse, status_code=201)
async def signup(data: UserCreate, service: UserService = Depends(get_user_service)):
    user, token = await service.signup(data)
    return ApiResponse(data={"user": user, "token": token}, message="User registered successfully")


@router.post("/login", response_model=ApiResponse)
async def login(data: UserLogin, service: UserService = Depends(get_user_service)):
    user, token = await service.authenticate(data.email, data.password)
    return ApiResponse(data={"user": user, "token": token}, message="Login successful")


@router.post("/token", response_model=TokenResponse)
async def login_for_access_token(
    form_data: OAuth2PasswordRequestForm = Depends(), service: UserService = Depends(get_user_service)
):
    """OAuth2 password flow; the username field carries the email"""
    user, token = await service.authenticate(form_data.username, form_data.password)
    return TokenResponse(access_token=token, token_type="bearer", user_id=user.id)


@router.get("/me", response_model=ApiResponse)
async def get_me(current_user: dict = Depends(get_current_user)):
    return ApiResponse(data=UserResponse.from_db_doc(current_user), message="User profile retrieved successfully")


@router.get("/verify", response_model=ApiResponse)
async def verify_token(current_user: dict = Depends(get_current_user)):
    return ApiResponse(
        data={"valid": True, "user": UserResponse.from_db_doc(current_user)}, message="Token is valid"
    )


@router.post("/logout", response_model=ApiResponse)
async def logout(current_user: dict = Depends(get_current_user)):
    # Tokens are stateless; the client drops its copy
    logger.info("User %s logged out", current_user["_id"])
    return ApiResponse(message="Logged out successfully")


@router.post("/refresh", response_model=ApiResponse)
async def refresh_token(
    current_user: dict = Depends(get_current_user), service: UserService = Depends(get_user_service)
):
    return ApiResponse(data={"token": service.refresh_token(str(current_user["_id"]))}, message="Token refreshed")


@router.post("/change-password", response_model=ApiResponse)
async def change_password(
    data: PasswordChange,
    current_user: dict = Depends(get_current_user),
    service: UserService = Depends(get_user_service),
):
    await service.change_password(str(current_user["_id"]), data.current_password, data.new_password)
    return ApiResponse(message="Password changed successfully")


@router.post("/request-password-reset", response_model=ApiResponse)
async def request_password_reset(data: PasswordResetRequest, service: UserService = Depends(get_user_service)):
    await service.request_password_reset(data.email)
    return ApiResponse(message="If an account with that email exists, a reset link has been sent")
