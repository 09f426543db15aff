from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .errors import ServiceError, service_error_handler
from .settings import settings


def create_app() -> FastAPI:
    app = FastAPI(title=settings.APP_NAME, debug=settings.DEBUG)

    if settings.CORS_ORIGINS:
        origins = settings.CORS_ORIGINS
        allow_credentials = True
        if "*" in origins:
            origins = ["*"]
            allow_credentials = False
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=allow_credentials,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.add_exception_handler(ServiceError, service_error_handler)
    return app
