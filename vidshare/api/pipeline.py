"""
Name: Request Pipeline Assembly

Responsibilities:
  - Declare the ordered stage plan (one StageDescriptor per cross-cutting stage)
  - Validate the plan before anything is mounted (ordering rules, terminal responder)
  - Materialize the plan onto a FastAPI app with injected collaborators

Collaborators:
  - crosscutting stages (body_parser, middleware, uploads, sanitize, security,
    xss, cors, rate_limit, hpp, static)
  - api.routes: versioned route groups
  - api.exception_handlers: ErrorResponderMiddleware + route-level handlers
  - lifecycle.runner: calls assemble_app() after the store is connected

Notes:
  - Starlette runs user middleware in list order and add_middleware() prepends,
    so stages are added in reverse and the error responder last (outermost)
  - Disabled stages stay in the plan so ordering rules still apply to them
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping

from fastapi import FastAPI

from .. import __version__
from ..crosscutting.body_parser import BodyParserMiddleware
from ..crosscutting.config import Settings
from ..crosscutting.cors import CORSStageMiddleware
from ..crosscutting.exceptions import PipelineAssemblyError
from ..crosscutting.hpp import HPPMiddleware
from ..crosscutting.logger import logger
from ..crosscutting.middleware import CookieParserMiddleware, RequestLoggingMiddleware
from ..crosscutting.rate_limit import FixedWindowRateLimiter, RateLimitMiddleware
from ..crosscutting.sanitize import SanitizeMiddleware
from ..crosscutting.security import SecurityHeadersMiddleware
from ..crosscutting.static import StaticAssetsMiddleware
from ..crosscutting.uploads import FileUploadMiddleware, prepare_upload_dir
from ..crosscutting.xss import XSSCleanMiddleware
from .exception_handlers import (
    REQUEST_ID_HEADER,
    ErrorResponderMiddleware,
    register_exception_handlers,
)
from .health import router as health_router
from .routes import RouteGroup, default_route_groups, include_route_groups

ROUTES_STAGE = "routes"
ERROR_RESPONDER_STAGE = "error_responder"

# (must run first, must run later)
ORDERING_CONSTRAINTS: tuple[tuple[str, str], ...] = (
    ("body_parser", "sanitize"),
    ("sanitize", ROUTES_STAGE),
    ("rate_limit", ROUTES_STAGE),
    ("static", ROUTES_STAGE),
)


@dataclass(frozen=True)
class StageDescriptor:
    """
    One cross-cutting stage of the request pipeline.

    Attributes:
        name: Unique stage name
        position: Execution order (strictly increasing across the plan)
        factory: ASGI middleware class, or None for the route dispatch stage
        options: Keyword arguments for the factory
        short_circuits: The stage may end the request itself (error or response)
        enabled: Disabled stages are validated but not mounted
    """

    name: str
    position: int
    factory: Callable[..., Any] | None
    options: Mapping[str, Any] = field(default_factory=dict)
    short_circuits: bool = False
    enabled: bool = True


def build_stage_plan(
    settings: Settings, *, limiter: FixedWindowRateLimiter | None = None
) -> tuple[StageDescriptor, ...]:
    """Ordered stage plan for the given settings."""
    if limiter is None:
        limiter = FixedWindowRateLimiter(
            settings.rate_limit_max_requests, settings.rate_limit_window_seconds
        )

    return (
        StageDescriptor(
            "body_parser",
            1,
            BodyParserMiddleware,
            {"max_body_bytes": settings.max_body_bytes},
            short_circuits=True,
        ),
        StageDescriptor("cookie_parser", 2, CookieParserMiddleware),
        StageDescriptor(
            "request_logger",
            3,
            RequestLoggingMiddleware,
            enabled=settings.is_verbose(),
        ),
        StageDescriptor(
            "file_upload",
            4,
            FileUploadMiddleware,
            {
                "upload_dir": settings.upload_dir,
                "max_upload_bytes": settings.max_upload_bytes,
            },
            short_circuits=True,
        ),
        StageDescriptor(
            "sanitize",
            5,
            SanitizeMiddleware,
            {"reject": settings.sanitize_reject},
            short_circuits=settings.sanitize_reject,
        ),
        StageDescriptor(
            "security_headers",
            6,
            SecurityHeadersMiddleware,
            {"is_production": settings.is_production()},
        ),
        StageDescriptor("xss_clean", 7, XSSCleanMiddleware),
        StageDescriptor(
            "cors",
            8,
            CORSStageMiddleware,
            {
                "allow_origins": settings.get_allowed_origins_list(),
                "allow_credentials": settings.cors_allow_credentials,
                "allow_methods": ["*"],
                "allow_headers": ["*"],
                "expose_headers": [REQUEST_ID_HEADER],
            },
            short_circuits=True,
        ),
        StageDescriptor(
            "rate_limit",
            9,
            RateLimitMiddleware,
            {"limiter": limiter, "trust_proxy": settings.trust_proxy},
            short_circuits=True,
        ),
        StageDescriptor("hpp", 10, HPPMiddleware),
        StageDescriptor(
            "static",
            11,
            StaticAssetsMiddleware,
            {"directory": settings.static_dir},
            short_circuits=True,
        ),
        StageDescriptor(ROUTES_STAGE, 12, None, short_circuits=True),
        StageDescriptor(
            ERROR_RESPONDER_STAGE,
            13,
            ErrorResponderMiddleware,
            {"production": settings.is_production()},
            short_circuits=True,
        ),
    )


def validate_plan(plan: Iterable[StageDescriptor]) -> tuple[StageDescriptor, ...]:
    """
    Check the plan before mounting it.

    Raises:
        PipelineAssemblyError: empty plan, duplicate names, positions not strictly
            increasing, a violated ordering constraint, missing route dispatch, or
            a last stage other than the error responder
    """
    stages = tuple(plan)
    if not stages:
        raise PipelineAssemblyError("Stage plan is empty")

    positions: dict[str, int] = {}
    previous: StageDescriptor | None = None
    for stage in stages:
        if stage.name in positions:
            raise PipelineAssemblyError(f"Duplicate stage name: {stage.name}")
        if previous is not None and stage.position <= previous.position:
            raise PipelineAssemblyError(
                f"Stage {stage.name!r} (position {stage.position}) must come after "
                f"{previous.name!r} (position {previous.position})"
            )
        if stage.factory is None and stage.name != ROUTES_STAGE:
            raise PipelineAssemblyError(f"Stage {stage.name!r} has no factory")
        positions[stage.name] = stage.position
        previous = stage

    if ROUTES_STAGE not in positions:
        raise PipelineAssemblyError("Stage plan has no route dispatch stage")

    for before, after in ORDERING_CONSTRAINTS:
        if before in positions and after in positions:
            if positions[before] >= positions[after]:
                raise PipelineAssemblyError(f"Stage {before!r} must run before {after!r}")

    last = stages[-1]
    if last.name != ERROR_RESPONDER_STAGE or not last.enabled:
        raise PipelineAssemblyError(
            f"Last stage must be {ERROR_RESPONDER_STAGE!r}, got {last.name!r}"
        )

    return stages


def assemble_app(
    settings: Settings,
    data_store,
    route_groups: Iterable[RouteGroup] | None = None,
    *,
    limiter: FixedWindowRateLimiter | None = None,
    plan: Iterable[StageDescriptor] | None = None,
) -> FastAPI:
    """
    Build the FastAPI app: validated stage plan, health probes, versioned groups.

    Raises:
        PipelineAssemblyError: the stage plan is invalid (nothing is mounted)
    """
    stages = validate_plan(
        plan if plan is not None else build_stage_plan(settings, limiter=limiter)
    )
    groups = list(route_groups) if route_groups is not None else default_route_groups()

    app = FastAPI(title="Vidshare API", version=__version__)

    # R: Injected collaborators (no module-level globals).
    app.state.settings = settings
    app.state.data_store = data_store
    app.state.stage_plan = stages
    app.state.rate_limiter = next(
        (s.options.get("limiter") for s in stages if s.name == "rate_limit"), None
    )

    app.include_router(health_router)
    prefixes = include_route_groups(app, groups)
    register_exception_handlers(app, production=settings.is_production())

    # R: Starlette builds the middleware stack lazily; create the staging
    # directory now so it exists before the first request.
    if any(s.name == "file_upload" and s.enabled for s in stages):
        prepare_upload_dir(settings.upload_dir)

    mounted = [s for s in stages if s.enabled and s.factory is not None]
    responder = mounted[-1]
    for stage in reversed(mounted[:-1]):
        app.add_middleware(stage.factory, **dict(stage.options))
    app.add_middleware(responder.factory, **dict(responder.options))

    logger.info(
        "pipeline assembled",
        extra={
            "stages": [s.name for s in stages if s.enabled],
            "disabled_stages": [s.name for s in stages if not s.enabled],
            "route_groups": prefixes,
        },
    )
    return app


__all__ = [
    "StageDescriptor",
    "ORDERING_CONSTRAINTS",
    "build_stage_plan",
    "validate_plan",
    "assemble_app",
]
