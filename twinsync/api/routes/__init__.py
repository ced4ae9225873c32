"""API route registration."""

from fastapi import APIRouter

from twinsync.api.routes.functions import router as functions_router
from twinsync.api.routes.openhab import router as openhab_router
from twinsync.api.routes.realtime import router as realtime_router
from twinsync.api.routes.sensors import router as sensors_router
from twinsync.api.routes.system import router as system_router

api_router = APIRouter()

api_router.include_router(system_router, tags=["System"])
api_router.include_router(openhab_router)
api_router.include_router(sensors_router)
api_router.include_router(realtime_router)
api_router.include_router(functions_router)
