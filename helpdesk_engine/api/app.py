"""
Helpdesk Engine API

FastAPI application with:
- Partial ticket and task updates (PUT)
- Work item reads with relations (GET)
- Health check

Authentication happens upstream; the caller's identity arrives in the
X-User-ID / X-User-Role headers.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import Body, Depends, FastAPI, Header, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..config import Config, load_config
from ..logging_setup import configure_logging
from ..models import Requester, UserRole, WorkItemKind
from ..repositories import UserRepository, WorkItemRepository, init_database
from ..repositories.base import get_default_db_path
from ..services import (
    AsyncioNotificationQueue,
    ConflictError,
    ForbiddenError,
    LoggingTransport,
    NotFoundError,
    SmtpTransport,
    StorageError,
    ValidationError,
    WorkItemError,
    WorkItemUpdateService,
)

logger = logging.getLogger(__name__)


# =============================================================================
# WIRING
# =============================================================================

def build_transport(config: Config):
    email = config.email
    if not email.smtp_enabled:
        return LoggingTransport(portal_url=email.portal_base_url)
    return SmtpTransport(
        host=email.smtp_host,
        port=email.smtp_port,
        sender=email.sender,
        username=email.smtp_user,
        password=email.smtp_password,
        use_tls=email.use_tls,
        timeout=email.timeout_seconds,
        portal_url=email.portal_base_url,
    )


def build_service(config: Config, queue) -> WorkItemUpdateService:
    db_path = config.database.path or get_default_db_path()
    return WorkItemUpdateService(
        item_repo=WorkItemRepository(db_path),
        user_repo=UserRepository(db_path),
        notification_queue=queue,
        optimistic_locking=config.engine.optimistic_locking,
        require_resolution_to_close=config.engine.require_resolution_to_close,
    )


# =============================================================================
# ERROR MAPPING
# =============================================================================

def _error_status(exc: WorkItemError) -> int:
    if isinstance(exc, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, ForbiddenError):
        return status.HTTP_403_FORBIDDEN
    if isinstance(exc, ValidationError):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(exc, ConflictError):
        return status.HTTP_409_CONFLICT
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def work_item_error_handler(request: Request, exc: WorkItemError):
    code = _error_status(exc)
    if isinstance(exc, StorageError) and code == status.HTTP_500_INTERNAL_SERVER_ERROR:
        logger.error("Storage failure on %s %s: %s", request.method, request.url.path, exc)
        content: Dict[str, Any] = {"error": "Request failed due to a storage error."}
    else:
        content = {"error": str(exc)}
    if isinstance(exc, ValidationError):
        content["details"] = exc.errors
    return JSONResponse(status_code=code, content=content)


# =============================================================================
# DEPENDENCIES
# =============================================================================

def get_service(request: Request) -> WorkItemUpdateService:
    return request.app.state.service


def get_requester(
    x_user_id: Optional[str] = Header(default=None),
    x_user_role: Optional[str] = Header(default=None),
) -> Requester:
    """Identity set by the upstream auth layer."""
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-ID header",
        )
    role = UserRole.STAFF
    if x_user_role:
        matches = [r for r in UserRole if r.value.lower() == x_user_role.strip().lower()]
        if not matches:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Unknown role: {x_user_role}",
            )
        role = matches[0]
    return Requester(id=x_user_id, role=role)


# =============================================================================
# APP
# =============================================================================

def create_app(config: Optional[Config] = None, service=None, queue=None) -> FastAPI:
    """
    Build the application.

    service / queue may be injected (tests); otherwise they are built from
    config and the database schema is created on startup.
    """
    if config is None:
        config = load_config()

    if queue is None:
        queue = AsyncioNotificationQueue(build_transport(config))
    if service is None:
        service = build_service(config, queue)

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        """Create tables on startup, flush pending e-mails on shutdown."""
        await init_database(config.database.path or get_default_db_path())
        yield
        await queue.drain()

    app = FastAPI(
        title="Helpdesk Engine",
        description="Partial updates for helpdesk tickets and tasks",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.service = service
    app.state.queue = queue

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(WorkItemError, work_item_error_handler)

    @app.get("/health")
    async def health_check():
        return {
            "status": "healthy",
            "service": "helpdesk-engine",
            "version": __version__,
        }

    # =========================================================================
    # TICKET ENDPOINTS
    # =========================================================================

    @app.put("/tickets/{ticket_id}")
    async def update_ticket(
        ticket_id: str,
        payload: Dict[str, Any] = Body(...),
        requester: Requester = Depends(get_requester),
        service: WorkItemUpdateService = Depends(get_service),
    ):
        """
        Partially update a ticket.

        Accepts status, assignee (assignedToId / assigned_to / assignee_id)
        and resolution_notes. Sending resolution notes closes the ticket.
        """
        item = await service.apply_update(WorkItemKind.TICKET, ticket_id, payload, requester)
        return item.model_dump(mode="json")

    @app.get("/tickets/{ticket_id}")
    async def get_ticket(
        ticket_id: str,
        service: WorkItemUpdateService = Depends(get_service),
    ):
        item = await service.get_item(WorkItemKind.TICKET, ticket_id)
        return item.model_dump(mode="json")

    # =========================================================================
    # TASK ENDPOINTS
    # =========================================================================

    @app.put("/tasks/{task_id}")
    async def update_task(
        task_id: str,
        payload: Dict[str, Any] = Body(...),
        requester: Requester = Depends(get_requester),
        service: WorkItemUpdateService = Depends(get_service),
    ):
        """
        Partially update a task.

        Accepts status, assignee, title, description, due_date,
        is_recurring and recurrence_rule.
        """
        item = await service.apply_update(WorkItemKind.TASK, task_id, payload, requester)
        return item.model_dump(mode="json")

    @app.get("/tasks/{task_id}")
    async def get_task(
        task_id: str,
        service: WorkItemUpdateService = Depends(get_service),
    ):
        item = await service.get_item(WorkItemKind.TASK, task_id)
        return item.model_dump(mode="json")

    return app


# =============================================================================
# RUN
# =============================================================================

def main():
    import uvicorn

    config = load_config()
    configure_logging(config.logging)
    uvicorn.run(create_app(config), host=config.server.host, port=config.server.port)


if __name__ == "__main__":
    main()
