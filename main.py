import logging
from datetime import datetime
from typing import Annotated, Callable, Optional

from fastapi import APIRouter, Depends, FastAPI, Path, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response

from auth import current_principal
from config import Settings, get_settings
from database import TaskStore
from errors import CredentialError, TaskApiError, ValidationFailed
from logging_setup import setup_logging
from models import (
    Pagination,
    Principal,
    TaskCreate,
    TaskOut,
    TaskPage,
    TaskPriority,
    TaskStats,
    TaskStatus,
    TaskUpdate,
    utcnow,
)
from queries import DEFAULT_LIMIT, DEFAULT_PAGE, MAX_LIMIT, MAX_PAGE, TaskFilter, count_pages
from services import TaskService

logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Credentials": "true",
    "Access-Control-Allow-Headers": (
        "Content-Type, Content-Length, Accept-Encoding, X-CSRF-Token, Authorization, "
        "accept, origin, Cache-Control, X-Requested-With"
    ),
    "Access-Control-Allow-Methods": "POST, OPTIONS, GET, PUT, DELETE, PATCH",
}

MAX_TASK_ID = 2**63 - 1

TaskId = Annotated[int, Path(ge=1, le=MAX_TASK_ID, description="Numeric task id")]


def error_body(code: str, detail: Optional[str] = None) -> dict:
    body = {"error": code}
    if detail:
        body["detail"] = detail
    return body


def get_service(request: Request) -> TaskService:
    return request.app.state.service


def _out(service: TaskService, task) -> TaskOut:
    return TaskOut.from_task(task, service.clock())


router = APIRouter(tags=["tasks"])


# Create - add a task


@router.post("/tasks", status_code=201, response_model=TaskOut)
def create_task(
    task: TaskCreate,
    principal: Principal = Depends(current_principal),
    service: TaskService = Depends(get_service),
):
    created = service.create(
        principal.user_id,
        title=task.title,
        description=task.description,
        priority=task.priority,
        due_date=task.due_date,
    )
    return _out(service, created)


# Read - list tasks (filter, order, paginate)


@router.get("/tasks", response_model=TaskPage)
def read_tasks(
    status: Optional[TaskStatus] = None,
    priority: Optional[TaskPriority] = None,
    overdue: bool = False,
    page: int = Query(DEFAULT_PAGE, ge=1, le=MAX_PAGE),
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=MAX_LIMIT),
    principal: Principal = Depends(current_principal),
    service: TaskService = Depends(get_service),
):
    task_filter = TaskFilter(status=status, priority=priority, overdue=overdue, page=page, limit=limit)
    tasks, total = service.list(principal.user_id, task_filter)
    return TaskPage(
        tasks=[_out(service, t) for t in tasks],
        pagination=Pagination(page=page, limit=limit, total=total, pages=count_pages(total, limit)),
    )


# Read - stats. Registered before /tasks/{task_id} so "stats" is not taken as an id.


@router.get("/tasks/stats", response_model=TaskStats)
def read_stats(
    principal: Principal = Depends(current_principal),
    service: TaskService = Depends(get_service),
):
    return service.stats(principal.user_id)


# Read - one task


@router.get("/tasks/{task_id}", response_model=TaskOut)
def read_task(
    task_id: TaskId,
    principal: Principal = Depends(current_principal),
    service: TaskService = Depends(get_service),
):
    return _out(service, service.get(principal.user_id, task_id))


# Update - fields that are present in the body only


@router.put("/tasks/{task_id}", response_model=TaskOut)
def update_task(
    task_update: TaskUpdate,
    task_id: TaskId,
    principal: Principal = Depends(current_principal),
    service: TaskService = Depends(get_service),
):
    updated = service.update(principal.user_id, task_id, task_update.to_patch())
    return _out(service, updated)


@router.patch("/tasks/{task_id}/complete", response_model=TaskOut)
def complete_task(
    task_id: TaskId,
    principal: Principal = Depends(current_principal),
    service: TaskService = Depends(get_service),
):
    return _out(service, service.mark_completed(principal.user_id, task_id))


@router.patch("/tasks/{task_id}/pending", response_model=TaskOut)
def reopen_task(
    task_id: TaskId,
    principal: Principal = Depends(current_principal),
    service: TaskService = Depends(get_service),
):
    return _out(service, service.mark_pending(principal.user_id, task_id))


# Delete - soft delete


@router.delete("/tasks/{task_id}")
def delete_task(
    task_id: TaskId,
    principal: Principal = Depends(current_principal),
    service: TaskService = Depends(get_service),
):
    service.delete(principal.user_id, task_id)
    return {"message": "Task deleted successfully"}


def _format_validation_errors(exc: RequestValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{loc}: {err.get('msg', 'invalid value')}")
    return "; ".join(parts)


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[TaskStore] = None,
    clock: Callable[[], datetime] = utcnow,
) -> FastAPI:
    settings = settings or get_settings()
    store = store or TaskStore(settings.db_path)

    app = FastAPI(
        title="Task Manager API",
        docs_url=None if settings.is_production else "/docs",
        redoc_url=None,
    )
    app.state.settings = settings
    app.state.service = TaskService(store, clock=clock)

    @app.middleware("http")
    async def cors(request: Request, call_next):
        if request.method == "OPTIONS":
            response = Response(status_code=204)
        else:
            response = await call_next(request)
        response.headers.update(CORS_HEADERS)
        return response

    @app.exception_handler(TaskApiError)
    async def handle_task_api_error(request: Request, exc: TaskApiError):
        headers = None
        if isinstance(exc, CredentialError):
            headers = {"WWW-Authenticate": "Bearer"}
        if exc.status_code >= 500:
            logger.exception("%s %s failed: %s", request.method, request.url.path, exc, exc_info=exc)
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(exc.code, exc.detail),
            headers=headers,
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=ValidationFailed.status_code,
            content=error_body(ValidationFailed.code, _format_validation_errors(exc)),
        )

    # Runs outside the http middleware, so CORS headers are added here.
    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.exception("%s %s failed", request.method, request.url.path, exc_info=exc)
        return JSONResponse(
            status_code=TaskApiError.status_code,
            content=error_body(TaskApiError.code),
            headers=dict(CORS_HEADERS),
        )

    @app.get("/health")
    def health():
        return {"status": "OK"}

    app.include_router(router, prefix=settings.api_prefix)
    return app


def _build_default_app() -> FastAPI:
    settings = get_settings()
    setup_logging(settings.log_level)
    return create_app(settings)


app = _build_default_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())
