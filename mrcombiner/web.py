"""FastAPI application receiving GitLab webhooks.

Provides:
    POST /          — GitLab webhook (note events)
    POST /webhook   — same handler, alternate path
    GET  /health    — liveness probe

Responses:
    200  {"message": "OK"}                 run accepted (runs in background)
    200  {"message": "Event ignored"}      not a trigger, or malformed payload
    200  {"message": "Project is already being processed"}
    403  {"error": "Forbidden"}            X-Gitlab-Token mismatch
    404  {"error": "Not Found"}
    500  {"error": "Internal Server Error"}

``?branch=<name>`` overrides the configured target branch for one run.

The handler never waits for the combination to finish: it submits a
``CombineJob`` to the ``CombineWorker`` whose drain loop runs as an
asyncio background task inside the lifespan.
"""

import asyncio
import contextlib
import functools
import hmac
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from mrcombiner.config import Settings, load_settings
from mrcombiner.errors import AuthorizationError
from mrcombiner.git import is_valid_branch_name
from mrcombiner.gitlab import GitLabClient
from mrcombiner.logging_setup import configure_logging
from mrcombiner.models import CombineJob
from mrcombiner.orchestrator import HostingGateway, combine_merge_requests
from mrcombiner.trigger import parse_trigger
from mrcombiner.worker import CombineWorker

logger = logging.getLogger(__name__)

SECRET_HEADER = "X-Gitlab-Token"


def _check_secret(settings: Settings, request: Request) -> None:
    """Raise ``AuthorizationError`` if a secret is configured and not matched."""
    if not settings.secret_token:
        return
    supplied = request.headers.get(SECRET_HEADER, "")
    if not hmac.compare_digest(supplied.encode(), settings.secret_token.encode()):
        raise AuthorizationError("Unknown client authentication")


@asynccontextmanager
async def _lifespan(app: FastAPI):
    """Start the worker drain loop; stop it and close the gateway on exit."""
    worker: CombineWorker = app.state.worker
    task = asyncio.create_task(worker.run())

    yield

    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task
    await worker.shutdown()

    gateway = app.state.gateway
    if hasattr(gateway, "aclose"):
        await gateway.aclose()


def create_app(
    settings: Settings | None = None,
    gateway: HostingGateway | None = None,
    worker: CombineWorker | None = None,
) -> FastAPI:
    """Create and configure the FastAPI app.

    When *settings* is ``None`` (e.g. when called by uvicorn as a factory),
    configuration is read from the environment; a ``ConfigurationError``
    then aborts startup.
    """
    if settings is None:
        settings = load_settings()
        configure_logging(settings.log_level)

    if gateway is None:
        gateway = GitLabClient(
            settings.api_base_url,
            settings.gitlab_token,
            timeout=settings.http_timeout,
            clone_protocol=settings.clone_protocol,
        )
    if worker is None:
        worker = CombineWorker(
            functools.partial(combine_merge_requests, settings=settings, gateway=gateway),
            max_concurrent=settings.max_concurrent_runs,
        )

    app = FastAPI(title="MR Combiner", lifespan=_lifespan)
    app.state.settings = settings
    app.state.gateway = gateway
    app.state.worker = worker

    # --- Error handlers ---

    @app.exception_handler(AuthorizationError)
    async def _forbidden(request: Request, exc: AuthorizationError):
        logger.error("%s from %s", exc, request.client.host if request.client else "unknown")
        return JSONResponse(status_code=403, content={"error": "Forbidden"})

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            logger.warning("404 Not Found: %s %s", request.method, request.url.path)
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception):
        logger.error("Unhandled error: %s", exc)
        return JSONResponse(status_code=500, content={"error": "Internal Server Error"})

    # --- Endpoints ---

    @app.get("/health")
    def health():
        return {"status": "ok"}

    async def handle_webhook(request: Request, branch: str | None = None):
        _check_secret(settings, request)

        try:
            event = await request.json()
        except ValueError:
            logger.warning("Webhook body is not valid JSON, ignoring")
            return {"message": "Event ignored"}

        trigger = parse_trigger(event, settings.trigger_message)
        if trigger is None:
            return {"message": "Event ignored"}

        target = settings.target_branch
        if branch:
            if await asyncio.to_thread(is_valid_branch_name, branch):
                target = branch
            else:
                logger.warning("Ignoring invalid branch override %r", branch)

        job = CombineJob(
            project_id=trigger.project_id,
            merge_request_iid=trigger.merge_request_iid,
            target_branch=target,
            label=settings.trigger_tag,
        )
        if not worker.submit(job):
            return {"message": "Project is already being processed"}
        return {"message": "OK"}

    app.post("/")(handle_webhook)
    app.post("/webhook")(handle_webhook)

    return app
