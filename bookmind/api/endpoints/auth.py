from typing import Annotated
from fastapi import APIRouter, HTTPException, status, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from bookmind.core import schemas, models
from bookmind.core.database import get_db
from bookmind.core.security import verify_password, create_access_token

router = APIRouter(prefix="/profile", tags=["Authentication"])

db_dep = Annotated[AsyncSession, Depends(get_db)]


@router.post("/login", status_code=status.HTTP_200_OK)
async def login(user_credentials: schemas.UserLogin, db: db_dep):
    query = select(models.User).where(models.User.email == user_credentials.email)
    result = await db.execute(query)
    db_user = result.scalars().first()

    # Same answer for unknown email and wrong password
    if not db_user or not verify_password(user_credentials.password, db_user.password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
        )

    token = create_access_token({"user_id": db_user.id, "role": db_user.role})
    return {"access_token": token, "token_type": "bearer"}
