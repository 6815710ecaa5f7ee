from typing import Annotated
from fastapi import APIRouter, HTTPException, status, Depends

from bookmind.ai_feature.insights import LibraryInsightsService, get_insights_service
from bookmind.core import models, schemas
from bookmind.core.security import validate_admin_role, validate_reader_role

router = APIRouter(prefix="/insights", tags=["Insights"])

service_dep = Annotated[LibraryInsightsService, Depends(get_insights_service)]
admin_dep = Annotated[models.User, Depends(validate_admin_role)]
reader_dep = Annotated[models.User, Depends(validate_reader_role)]


async def _habits_or_error(service: LibraryInsightsService, user_id: int):
    try:
        return await service.reading_habits(user_id)
    except LookupError as error:
        raise HTTPException(status.HTTP_404_NOT_FOUND, str(error))
    except ValueError as error:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, str(error))


@router.get("/library", response_model=schemas.LibraryInsights)
async def get_library_insights(admin: admin_dep, service: service_dep):
    return await service.library_insights()


@router.get("/my-insights", response_model=schemas.LibraryInsights)
async def get_my_insights(current_user: reader_dep, service: service_dep):
    return await service.library_insights(current_user.id)


@router.get("/my-habits", response_model=schemas.ReadingHabits)
async def get_my_reading_habits(current_user: reader_dep, service: service_dep):
    return await _habits_or_error(service, current_user.id)


@router.get("/user/{user_id}/habits", response_model=schemas.ReadingHabits)
async def get_user_reading_habits(user_id: int, admin: admin_dep, service: service_dep):
    return await _habits_or_error(service, user_id)
