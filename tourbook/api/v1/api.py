from fastapi import APIRouter
from tourbook.api.v1.routes.booking_sessions import router as booking_sessions_router
from tourbook.api.v1.routes.currency import router as currency_router

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(booking_sessions_router)
api_router.include_router(currency_router)
