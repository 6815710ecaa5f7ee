from typing import Annotated

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from bookmind.ai_feature.service import AiQueryService, get_ai_query_service
from bookmind.core import models, schemas
from bookmind.core.exceptions import QueryError
from bookmind.core.security import get_current_user, is_admin

router = APIRouter(prefix="/ai", tags=["AI Assistant"])

user_dep = Annotated[models.User, Depends(get_current_user)]
service_dep = Annotated[AiQueryService, Depends(get_ai_query_service)]


@router.post("/query", response_model=schemas.AiQueryResponse)
async def ask_question(
    request: schemas.AiQueryRequest, current_user: user_dep, service: service_dep
):
    """Answer a natural-language question about your books (or the library, for admins)."""
    try:
        return await service.ask(request.question, current_user.id, is_admin(current_user))
    except QueryError as error:
        body = schemas.AiQueryResponse(
            success=False, answer=error.answer, error_message=error.detail
        )
        return JSONResponse(
            status_code=error.status_code,
            content=body.model_dump(mode="json", by_alias=True),
        )
