import logging
from typing import Annotated, Optional
from fastapi import APIRouter, HTTPException, status, Depends

from bookmind.ai_feature.invalidation import InvalidationBroadcaster, get_invalidator
from bookmind.ai_feature.recommendations import (
    RecommendationService,
    get_recommendation_service,
)
from bookmind.core import models, schemas
from bookmind.core.security import get_current_user

router = APIRouter(prefix="/recommendations", tags=["Recommendations"])

user_dep = Annotated[models.User, Depends(get_current_user)]
service_dep = Annotated[RecommendationService, Depends(get_recommendation_service)]


@router.post("", response_model=schemas.RecommendationResponse)
async def get_recommendations(
    current_user: user_dep,
    service: service_dep,
    request: Optional[schemas.RecommendationRequest] = None,
):
    count = request.count if request else schemas.RecommendationRequest().count
    return await service.recommend(current_user.id, count)


@router.post("/save", response_model=schemas.RecommendationAction)
async def save_recommended_book(
    request: schemas.SaveRecommendationRequest,
    current_user: user_dep,
    service: service_dep,
    invalidator: Annotated[InvalidationBroadcaster, Depends(get_invalidator)],
):
    try:
        await service.save(current_user.id, request)
    except Exception as error:
        await service.store.rollback()
        logging.error(f"Failed to save recommended book: {error}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to add a book",
        )

    invalidator.invalidate(current_user.id)
    return schemas.RecommendationAction(success=True, message="Book added to your library.")


@router.post("/dismiss", response_model=schemas.RecommendationAction)
async def dismiss_recommended_book(
    request: schemas.DismissRecommendationRequest,
    current_user: user_dep,
    service: service_dep,
):
    return await service.dismiss(current_user.id, request.title)
