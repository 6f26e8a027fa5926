import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .core.config import settings
from .core.errors import install_exception_handlers
from .core.logging_config import configure_logging
from .routers import register_routers

configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.APP_NAME, version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition", "Retry-After"],
)

install_exception_handlers(app)


@app.get("/health")
def health():
    return {"status": "ok"}


register_routers(app)
logger.info("%s started (%s)", settings.APP_NAME, settings.ENV)
