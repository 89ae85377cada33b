import logging
import traceback
from contextlib import asynccontextmanager
from typing import Optional
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from dashboard.config import settings
from dashboard.errors import DatastoreError, PreconditionError
from dashboard.pipeline import PipelineRunController
from dashboard.schemas import ActivateWorkspaceRequest
from dashboard.workspace import WorkspaceSession, build_session

logger = logging.getLogger(__name__)

def _session(request: Request) -> WorkspaceSession:
    return request.app.state.session

def _controller(request: Request) -> PipelineRunController:
    controller = _session(request).controller
    if controller is None:
        raise HTTPException(status_code=409, detail="Workspace not loaded")
    return controller

def _runs_payload(controller: PipelineRunController) -> dict:
    return {
        "workspace_id": controller.workspace_id,
        "runs": [run.model_dump(mode="json") for run in controller.runs()],
        "stats": controller.store.stats().model_dump(mode="json"),
    }

def create_app(session: Optional[WorkspaceSession] = None) -> FastAPI:
    """Build the dashboard API. Without *session* one is wired from settings at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.session is None:
            app.state.session = await build_session(settings)
        try:
            yield
        finally:
            await app.state.session.aclose()

    app = FastAPI(title="Ingestion Dashboard API", lifespan=lifespan)
    app.state.session = session

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        try:
            response = await call_next(request)
            return response
        except Exception as e:
            logger.error(f"Request failed: {str(e)}", exc_info=True)
            return JSONResponse(
                status_code=500,
                content={"detail": str(e), "traceback": str(traceback.format_exc())}
            )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Global exception handler caught: {str(exc)}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "detail": str(exc),
                "traceback": str(traceback.format_exc())
            }
        )

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy"}

    @app.post("/api/workspace/activate")
    async def activate_workspace(body: ActivateWorkspaceRequest, request: Request):
        """Activate a workspace, resolving it from the current session when no id is given."""
        try:
            controller = await _session(request).activate(body.workspace_id)
        except PreconditionError as e:
            raise HTTPException(status_code=409, detail=e.message)
        except DatastoreError as e:
            logger.error(f"Failed to load workspace: {str(e)}")
            raise HTTPException(status_code=502, detail="Failed to load workspace")
        return {"workspace_id": controller.workspace_id}

    @app.post("/api/workspace/deactivate")
    async def deactivate_workspace(request: Request):
        await _session(request).deactivate()
        return {"workspace_id": None}

    @app.get("/api/pipeline/state")
    async def pipeline_state(request: Request):
        return _controller(request).snapshot().model_dump(mode="json")

    @app.post("/api/pipeline/trigger", status_code=202)
    async def trigger_pipeline(request: Request):
        """Start a pipeline run; rejections are reported through notifications."""
        controller = _controller(request)
        await controller.trigger_pipeline()
        return controller.snapshot().model_dump(mode="json")

    @app.get("/api/pipeline/runs")
    async def pipeline_runs(request: Request):
        return _runs_payload(_controller(request))

    @app.post("/api/pipeline/refresh")
    async def refresh_runs(request: Request):
        controller = _controller(request)
        await controller.refresh()
        return _runs_payload(controller)

    @app.get("/api/notifications")
    async def notifications(request: Request):
        toasts = _session(request).toasts
        if toasts is None:
            return []
        return [toast.model_dump(mode="json") for toast in toasts.list()]

    return app

app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("dashboard.main:app", host=settings.HOST, port=settings.PORT, reload=settings.ENVIRONMENT == "development")
