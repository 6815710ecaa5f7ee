from fastapi import APIRouter
from bookmind.api.endpoints import ai_query, auth, books, insights, recommendations, users

api_router = APIRouter()

# Combine all sub-routers into one
api_router.include_router(auth.router)
api_router.include_router(users.router)
api_router.include_router(books.router)
api_router.include_router(ai_query.router)
api_router.include_router(insights.router)
api_router.include_router(recommendations.router)
