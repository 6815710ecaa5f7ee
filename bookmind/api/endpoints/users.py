import logging
from typing import Annotated
from fastapi import APIRouter, HTTPException, status, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from bookmind.ai_feature.invalidation import InvalidationBroadcaster, get_invalidator
from bookmind.core import schemas, models
from bookmind.core.database import get_db
from bookmind.core.security import get_current_user, hash_password, validate_admin_role

router = APIRouter(prefix="/profile", tags=["Users"])

db_dep = Annotated[AsyncSession, Depends(get_db)]


@router.post(
    "/signup",
    response_model=schemas.UserResponse,
    status_code=status.HTTP_201_CREATED,
)
async def sign_up(user: schemas.CreateUser, db: db_dep):
    query = select(models.User).where(models.User.email == user.email)
    result = await db.execute(query)

    if result.scalars().first():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail="User already exists"
        )

    try:
        new_user = models.User(
            email=user.email,
            username=user.username,
            password=hash_password(user.password),
            role=schemas.UserRole.USER.value,
        )
        db.add(new_user)
        await db.commit()
        await db.refresh(new_user)
        return new_user
    except Exception as error:
        await db.rollback()
        logging.error(f"Failed to add a new user: {error}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to sign up",
        )


@router.get("/me", response_model=schemas.UserResponse)
async def get_me(current_user: Annotated[models.User, Depends(get_current_user)]):
    return current_user


@router.get("/{user_id}", response_model=schemas.UserResponse)
async def get_user(
    user_id: int,
    admin: Annotated[models.User, Depends(validate_admin_role)],
    db: db_dep,
):
    query = select(models.User).where(models.User.id == user_id)
    result = await db.execute(query)
    db_user = result.scalars().first()

    if not db_user:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="User not found"
        )
    return db_user


@router.delete("/{user_id}")
async def delete_user(
    user_id: int,
    admin: Annotated[models.User, Depends(validate_admin_role)],
    db: db_dep,
    invalidator: Annotated[InvalidationBroadcaster, Depends(get_invalidator)],
):
    if admin.id == user_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="You cannot delete your own admin account.",
        )

    query = select(models.User).where(models.User.id == user_id)
    result = await db.execute(query)
    user_to_delete = result.scalars().first()

    if not user_to_delete:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"User with id: {user_id} does not exist",
        )

    try:
        await db.delete(user_to_delete)
        await db.commit()
    except Exception as error:
        await db.rollback()
        logging.error(f"Failed to delete user {user_id}: {error}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to delete a user",
        )

    # Their books went with them (cascade)
    invalidator.invalidate(user_id)
    return {"message": "Successfully deleted a user"}
