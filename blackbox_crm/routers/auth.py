import re

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from blackbox_crm.core.api_docs import error_responses
from blackbox_crm.core.config import settings
from blackbox_crm.core.deps import commit_or_500, get_db
from blackbox_crm.core.id_utils import generate_short_token
from blackbox_crm.core.observability import log_event
from blackbox_crm.core.rate_limit import LoginRateLimiter
from blackbox_crm.core.security import create_access_token, hash_password, verify_password
from blackbox_crm.core.security_current import get_current_user
from blackbox_crm.models.user import User
from blackbox_crm.schemas.auth import (
    LoginIn,
    RegisterIn,
    TokenOut,
    UpdateProfileIn,
    UserProfileOut,
)

router = APIRouter(prefix="/auth", tags=["auth"])
TOKEN_RESPONSE = {
    200: {
        "description": "Bearer access token",
        "content": {
            "application/json": {
                "example": {
                    "access_token": "access-token",
                    "token_type": "bearer",
                }
            }
        },
    }
}
PROFILE_EXAMPLE = {
    "id": "abc123",
    "email": "owner@example.com",
    "username": "sara_khan",
    "full_name": "Sara Khan",
    "company": "BlackBox Solutions",
    "phone": "+92 300 1234567",
    "address": "Karachi",
    "created_at": "2026-10-01T12:00:00Z",
    "updated_at": "2026-10-01T12:00:00Z",
}

login_rate_limiter = LoginRateLimiter(
    max_attempts=settings.auth_rate_limit_max_attempts,
    window_seconds=settings.auth_rate_limit_window_seconds,
    lock_seconds=settings.auth_rate_limit_lock_seconds,
)


def _slugify_username(seed: str) -> str:
    cleaned = re.sub(r"[^a-z0-9_]+", "_", seed.strip().lower())
    cleaned = re.sub(r"_+", "_", cleaned).strip("_")
    if not cleaned:
        return "user"
    return cleaned[:30]


def _username_taken(db: Session, username: str, *, exclude_user_id: str | None = None) -> bool:
    stmt = select(User.id).where(func.lower(User.username) == username.lower())
    if exclude_user_id:
        stmt = stmt.where(User.id != exclude_user_id)
    return db.execute(stmt).first() is not None


def _generate_unique_username(db: Session, preferred_username: str | None, fallback_seed: str) -> str:
    base = _slugify_username(preferred_username or fallback_seed)
    candidate = base
    while _username_taken(db, candidate):
        candidate = f"{base[:22]}_{generate_short_token(6)}"
    return candidate


def _client_ip(request: Request) -> str:
    forwarded_for = request.headers.get("x-forwarded-for", "").strip()
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def _rate_key(identifier: str, client_ip: str) -> str:
    return f"{identifier.strip().lower()}:{client_ip}"


def _profile_out(user: User) -> UserProfileOut:
    return UserProfileOut(
        id=user.id,
        email=user.email,
        username=user.username,
        full_name=user.full_name,
        company=user.company,
        phone=user.phone,
        address=user.address,
        created_at=user.created_at,
        updated_at=user.updated_at,
    )


def _enforce_rate_limit(identifier: str, client_ip: str) -> str:
    key = _rate_key(identifier, client_ip)
    retry_after = login_rate_limiter.check(key)
    if retry_after > 0:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many failed attempts. Try again later.",
            headers={"Retry-After": str(retry_after)},
        )
    return key


def _authenticate_user(db: Session, identifier: str, password: str) -> User:
    normalized_identifier = identifier.strip().lower()
    user = db.execute(
        select(User).where(
            or_(
                func.lower(User.email) == normalized_identifier,
                func.lower(User.username) == normalized_identifier,
            )
        )
    ).scalar_one_or_none()

    if not user or not user.is_active or not verify_password(password, user.hashed_password):
        raise HTTPException(status_code=401, detail="Invalid credentials")

    return user


def _login(db: Session, identifier: str, password: str, request: Request) -> TokenOut:
    key = _enforce_rate_limit(identifier, _client_ip(request))
    try:
        user = _authenticate_user(db, identifier, password)
    except HTTPException as exc:
        if exc.status_code == 401:
            attempts_left = login_rate_limiter.register_failure(key)
            log_event("login_failed", identifier=identifier.strip().lower(), attempts_left=attempts_left)
        raise

    login_rate_limiter.register_success(key)
    return TokenOut(access_token=create_access_token(user.id))


@router.post(
    "/register",
    response_model=TokenOut,
    summary="Register a user",
    description="Creates a user account and returns a bearer access token.",
    responses={**TOKEN_RESPONSE, **error_responses(400, 422, 500)},
)
def register(payload: RegisterIn, db: Session = Depends(get_db)):
    normalized_email = payload.email.lower()
    exists = db.execute(
        select(User.id).where(func.lower(User.email) == normalized_email)
    ).first()
    if exists:
        raise HTTPException(status_code=400, detail="Email already registered")

    if payload.username and _username_taken(db, _slugify_username(payload.username)):
        raise HTTPException(status_code=400, detail="Username already taken")

    user = User(
        email=normalized_email,
        username=_generate_unique_username(
            db,
            preferred_username=payload.username,
            fallback_seed=normalized_email.split("@")[0],
        ),
        full_name=payload.full_name,
        company=payload.company,
        hashed_password=hash_password(payload.password),
    )
    db.add(user)
    db.flush()
    user_id = user.id
    commit_or_500(db, action="register user")
    log_event("user_registered", user_id=user_id)
    return TokenOut(access_token=create_access_token(user_id))


@router.post(
    "/login",
    response_model=TokenOut,
    summary="Login with JSON",
    description="Authenticate with email/username and password.",
    responses={**TOKEN_RESPONSE, **error_responses(401, 422, 429, 500)},
)
def login(payload: LoginIn, request: Request, db: Session = Depends(get_db)):
    return _login(db, payload.identifier, payload.password, request)


@router.post(
    "/token",
    response_model=TokenOut,
    summary="OAuth2 password token (Swagger Authorize)",
    description=(
        "Form-data login endpoint used by Swagger Authorize. "
        "Use your email or username in the `username` field."
    ),
    responses={**TOKEN_RESPONSE, **error_responses(401, 422, 429, 500)},
)
def login_for_swagger(
    request: Request,
    db: Session = Depends(get_db),
    form_data: OAuth2PasswordRequestForm = Depends(),
):
    return _login(db, form_data.username, form_data.password, request)


@router.get(
    "/me",
    response_model=UserProfileOut,
    summary="Get current user profile",
    responses={
        200: {
            "description": "Profile details",
            "content": {"application/json": {"example": PROFILE_EXAMPLE}},
        },
        **error_responses(401, 500),
    },
)
def get_my_profile(user: User = Depends(get_current_user)):
    return _profile_out(user)


@router.patch(
    "/me",
    response_model=UserProfileOut,
    summary="Update current user profile",
    description="Updates name, username, company, phone and/or address for the authenticated user.",
    responses={
        200: {
            "description": "Updated profile details",
            "content": {"application/json": {"example": PROFILE_EXAMPLE}},
        },
        **error_responses(400, 401, 422, 500),
    },
)
def update_my_profile(
    payload: UpdateProfileIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    fields_set = payload.model_fields_set

    if "full_name" in fields_set and payload.full_name is not None:
        user.full_name = payload.full_name

    if "username" in fields_set and payload.username is not None:
        normalized_username = _slugify_username(payload.username)
        if _username_taken(db, normalized_username, exclude_user_id=user.id):
            raise HTTPException(status_code=400, detail="Username already taken")
        user.username = normalized_username

    if "company" in fields_set:
        user.company = payload.company
    if "phone" in fields_set:
        user.phone = payload.phone
    if "address" in fields_set:
        user.address = payload.address

    commit_or_500(db, action="update profile")
    db.refresh(user)
    return _profile_out(user)
