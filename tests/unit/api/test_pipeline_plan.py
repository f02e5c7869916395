"""
Name: Stage Plan Tests

Responsibilities:
  - The default plan has the documented order and toggles
  - validate_plan rejects broken plans before anything is mounted
  - assemble_app injects collaborators and mounts the responder outermost
"""

from dataclasses import replace

import pytest

from vidshare.api.exception_handlers import ErrorResponderMiddleware
from vidshare.api.pipeline import (
    StageDescriptor,
    assemble_app,
    build_stage_plan,
    validate_plan,
)
from vidshare.crosscutting.body_parser import BodyParserMiddleware
from vidshare.crosscutting.exceptions import PipelineAssemblyError
from vidshare.crosscutting.rate_limit import FixedWindowRateLimiter

EXPECTED_ORDER = [
    "body_parser",
    "cookie_parser",
    "request_logger",
    "file_upload",
    "sanitize",
    "security_headers",
    "xss_clean",
    "cors",
    "rate_limit",
    "hpp",
    "static",
    "routes",
    "error_responder",
]


def _swap(plan, first, second):
    stages = list(plan)
    i = next(n for n, s in enumerate(stages) if s.name == first)
    j = next(n for n, s in enumerate(stages) if s.name == second)
    stages[i], stages[j] = (
        replace(stages[j], position=stages[i].position),
        replace(stages[i], position=stages[j].position),
    )
    return stages


@pytest.mark.unit
class TestBuildStagePlan:
    def test_order(self, settings):
        plan = build_stage_plan(settings)

        assert [s.name for s in plan] == EXPECTED_ORDER
        assert [s.position for s in plan] == list(range(1, 14))

    def test_request_logger_only_in_development(self, make_settings):
        dev = {s.name: s for s in build_stage_plan(make_settings(run_mode="development"))}
        prod = {s.name: s for s in build_stage_plan(make_settings(run_mode="production"))}

        assert dev["request_logger"].enabled is True
        assert prod["request_logger"].enabled is False

    def test_rate_limit_options_from_settings(self, make_settings):
        plan = build_stage_plan(
            make_settings(rate_limit_max_requests=5, rate_limit_window_seconds=30)
        )
        limiter = next(s for s in plan if s.name == "rate_limit").options["limiter"]

        assert limiter.max_requests == 5
        assert limiter.window_seconds == 30

    def test_injected_limiter_is_used(self, settings):
        limiter = FixedWindowRateLimiter(1, 1)

        plan = build_stage_plan(settings, limiter=limiter)

        assert next(s for s in plan if s.name == "rate_limit").options["limiter"] is limiter

    def test_default_plan_is_valid(self, settings):
        assert validate_plan(build_stage_plan(settings))


@pytest.mark.unit
class TestValidatePlan:
    def test_empty_plan(self):
        with pytest.raises(PipelineAssemblyError, match="empty"):
            validate_plan([])

    def test_duplicate_names(self, settings):
        plan = list(build_stage_plan(settings))
        plan.insert(1, replace(plan[0], position=1))

        with pytest.raises(PipelineAssemblyError, match="Duplicate"):
            validate_plan(plan)

    def test_positions_must_increase(self, settings):
        plan = list(build_stage_plan(settings))
        plan[3] = replace(plan[3], position=plan[2].position)

        with pytest.raises(PipelineAssemblyError, match="must come after"):
            validate_plan(plan)

    @pytest.mark.parametrize(
        "first,second",
        [
            ("body_parser", "sanitize"),
            ("sanitize", "routes"),
            ("rate_limit", "routes"),
            ("static", "routes"),
        ],
    )
    def test_ordering_constraints(self, settings, first, second):
        plan = _swap(build_stage_plan(settings), first, second)

        with pytest.raises(PipelineAssemblyError, match="must run before"):
            validate_plan(plan)

    def test_error_responder_must_be_last(self, settings):
        plan = list(build_stage_plan(settings))
        plan.append(StageDescriptor("late", 99, BodyParserMiddleware))

        with pytest.raises(PipelineAssemblyError, match="Last stage"):
            validate_plan(plan)

    def test_routes_stage_required(self, settings):
        plan = [s for s in build_stage_plan(settings) if s.name != "routes"]

        with pytest.raises(PipelineAssemblyError, match="route dispatch"):
            validate_plan(plan)

    def test_stage_without_factory(self, settings):
        plan = list(build_stage_plan(settings))
        plan[1] = replace(plan[1], factory=None)

        with pytest.raises(PipelineAssemblyError, match="no factory"):
            validate_plan(plan)


@pytest.mark.unit
class TestAssembleApp:
    def test_invalid_plan_is_rejected(self, settings, fake_store):
        with pytest.raises(PipelineAssemblyError):
            assemble_app(settings, fake_store, plan=[])

    def test_collaborators_are_injected(self, settings, fake_store):
        limiter = FixedWindowRateLimiter(10, 60)

        app = assemble_app(settings, fake_store, [], limiter=limiter)

        assert app.state.data_store is fake_store
        assert app.state.settings is settings
        assert app.state.rate_limiter is limiter
        assert [s.name for s in app.state.stage_plan] == EXPECTED_ORDER

    def test_error_responder_is_outermost(self, settings, fake_store):
        app = assemble_app(settings, fake_store, [])

        assert app.user_middleware[0].cls is ErrorResponderMiddleware
        assert app.user_middleware[1].cls is BodyParserMiddleware

    def test_disabled_stage_not_mounted(self, make_settings, fake_store):
        app = assemble_app(make_settings(run_mode="production"), fake_store, [])

        names = [m.cls.__name__ for m in app.user_middleware]
        assert "RequestLoggingMiddleware" not in names
        assert len(names) == 11

    def test_upload_dir_created_at_assembly(self, make_settings, fake_store, tmp_path):
        upload_dir = tmp_path / "a" / "b" / "uploads"

        assemble_app(make_settings(upload_dir=str(upload_dir)), fake_store, [])

        assert upload_dir.is_dir()
