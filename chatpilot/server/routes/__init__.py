"""Route registration for the ChatPilot API."""

from fastapi import FastAPI

from .process import router as process_router


def register_routes(app: FastAPI):
    app.include_router(process_router)
