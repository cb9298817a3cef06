"""
Operator accounts: sign-up, login and the current-operator dependency.

Guests never authenticate; they carry an access token instead. Operators
own events and are the only callers of the scanner and roster endpoints.
"""

from fastapi import Depends, HTTPException, status
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logging import get_logger
from app.core.security import create_access_token, get_current_user_id, hash_password, verify_password
from app.db.session import get_db
from app.models.user import User
from app.schemas.user import UserCreate, UserLogin

logger = get_logger(__name__)


async def register_operator(db: AsyncSession, user_data: UserCreate) -> User:
    """
    Create an operator account with a bcrypt-hashed password.
    Raises 409 if the email or username is taken.
    """
    result = await db.execute(
        select(User).where(or_(User.email == user_data.email, User.username == user_data.username))
    )
    existing = result.scalars().first()
    if existing is not None:
        reason = "email_exists" if existing.email == user_data.email else "username_exists"
        logger.warning("operator_signup_failed", reason=reason)
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Email already registered" if reason == "email_exists" else "Username already taken",
        )

    operator = User(
        email=user_data.email,
        username=user_data.username,
        hashed_password=hash_password(user_data.password),
    )
    db.add(operator)
    await db.commit()
    await db.refresh(operator)

    logger.info("operator_registered", user_id=operator.id)
    return operator


async def authenticate_operator(db: AsyncSession, login_data: UserLogin) -> str:
    """
    Check credentials and issue a JWT for scanner and guest-list sessions.
    Raises 401 on bad credentials, 403 on a deactivated account.
    """
    result = await db.execute(select(User).where(User.email == login_data.email))
    operator = result.scalar_one_or_none()

    if not operator or not verify_password(login_data.password, operator.hashed_password):
        logger.warning("operator_login_failed")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not operator.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is deactivated",
        )

    token = create_access_token(data={"sub": str(operator.id)})
    logger.info("operator_logged_in", user_id=operator.id)
    return token


async def get_current_operator(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> User:
    """FastAPI dependency: the authenticated, active operator."""
    operator = await db.get(User, user_id)
    if operator is None or not operator.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return operator
