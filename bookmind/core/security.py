from passlib.context import CryptContext
from datetime import datetime, timedelta, timezone
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from typing import Annotated
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
import jwt

from bookmind.core.database import get_db
from bookmind.core import models
from bookmind.core.config import settings
from bookmind.core.schemas import UserRole

db_dep = Annotated[AsyncSession, Depends(get_db)]
# Hash mechanism
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str):
    return pwd_context.hash(password)


def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(data: dict):
    to_encode = data.copy()

    expire_time = datetime.now(timezone.utc) + timedelta(
        minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES
    )
    to_encode.update({"exp": expire_time})

    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def is_admin(user: models.User) -> bool:
    return (user.role or "").lower() == UserRole.ADMIN.value


# If you don't have a token yet, "profile/login" is where to get one
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="profile/login")


# Decode the token and load the user it belongs to
async def get_current_user(token: Annotated[str, Depends(oauth2_scheme)], db: db_dep):
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = jwt.decode(
            token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM]
        )
        user_id = payload.get("user_id")

        if user_id is None:
            raise credentials_exception

    # Bad signature, garbage or expired token
    except jwt.InvalidTokenError:
        raise credentials_exception

    query = select(models.User).where(models.User.id == user_id)
    result = await db.execute(query)
    user = result.scalars().first()

    if user is None:
        raise credentials_exception

    return user


async def validate_admin_role(
    current_user: Annotated[models.User, Depends(get_current_user)],
):
    if not is_admin(current_user):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You do not have enough privileges (Admin only)",
        )
    return current_user


# Reading insights are only for reader accounts, admins have no collection
async def validate_reader_role(
    current_user: Annotated[models.User, Depends(get_current_user)],
):
    if is_admin(current_user):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin users are excluded from reading insights",
        )
    return current_user
