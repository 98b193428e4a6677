from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
import structlog

from node_manager.api.routes import deploy, fronts
from node_manager.core.config import settings
from node_manager.core.errors import NodeMgrError
from node_manager.core.logging import configure_logging
from node_manager.db.session import engine
from node_manager.db.base import Base  # ensures Base is imported
import node_manager.models  # noqa: F401  # import models so metadata is populated
from node_manager.services.deploy import get_deploy_service

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(json_output=settings.LOG_JSON, level=settings.LOG_LEVEL)
    Base.metadata.create_all(bind=engine)
    logger.info("node manager started", database=engine.url.render_as_string(hide_password=True))
    yield
    if get_deploy_service.cache_info().currsize:
        get_deploy_service().node_async.shutdown(wait=False)


app = FastAPI(title=settings.PROJECT_NAME, lifespan=lifespan)


@app.exception_handler(NodeMgrError)
async def node_mgr_error_handler(request: Request, exc: NodeMgrError):
    logger.warning(
        "request failed",
        path=request.url.path,
        code=exc.code,
        error=exc.message,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"code": exc.code, "message": exc.message, "data": exc.output},
    )


@app.get("/health")
def health():
    return {"code": 0, "message": "success", "data": "ok"}


# include routers
app.include_router(deploy.router)
app.include_router(fronts.router)
