"""Tests for the validate and job.dispatch steps and the job registry."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import pytest

from fragments.dsl import ExecutionContext, StepFactory, StepServices
from fragments.dsl.exceptions import StepConfigError, StepValidationError
from fragments.dsl.steps.job import parse_delay, resolve_references
from fragments.dsl.steps.validate import check_rule
from fragments.jobs import InMemoryJobQueue, JobQueue, JobRegistry


@dataclass
class EnrichFragment:
    """Job used by the dispatch tests."""

    fragment_id: int
    mode: str = "fast"


def _validate(factory: StepFactory, params: dict[str, Any], ctx: dict[str, Any]) -> Any:
    return factory.create("validate").execute({"with": params}, ExecutionContext.create(ctx))


# ============================================================================
# validate
# ============================================================================


class TestCheckRule:
    """Tests for check_rule."""

    @pytest.mark.parametrize(
        ("value", "rule", "message"),
        [
            (None, "required", "The f field is required."),
            ([], "required", "The f field is required."),
            ("ab", "min:3", "The f field must be at least 3 characters."),
            (2, "min:3", "The f field must be at least 3."),
            ("5", "min:3", None),
            ("abcdef", "max:5", "The f field must not exceed 5 characters."),
            (10, "max:5", "The f field must not exceed 5."),
            ("abc", "length:4", "The f field must be exactly 4 characters."),
            (1234, "length:4", "The f field must be a string."),
            ("x1", "numeric", "The f field must be numeric."),
            (5, "string", "The f field must be a string."),
            ("c", "in:a,b", "The f field must be one of: a, b."),
            ("b", "in:a,b", None),
            ("/todo", "not_starts_with:/", "The f field must not start with '/'."),
            ("anything", "unknown_rule", None),
        ],
    )
    def test_rules(self, value: Any, rule: str, message: str | None) -> None:
        """Each rule returns its message on failure and None on success."""
        assert check_rule("f", value, rule) == message

    def test_bad_parameter(self) -> None:
        """Non-integer bounds are configuration errors."""
        with pytest.raises(StepConfigError, match="must be an integer"):
            check_rule("f", "x", "min:abc")


class TestValidateStep:
    """Tests for ValidateStep.execute."""

    def test_valid(self, factory: StepFactory) -> None:
        """Passing fields are returned as validated data."""
        result = _validate(factory, {"rules": {"ctx.title": "required|min:3"}}, {"title": "Buy milk"})
        assert result == {"valid": True, "errors": {}, "validated_data": {"ctx.title": "Buy milk"}, "error_count": 0}

    def test_first_failing_rule_only(self, factory: StepFactory) -> None:
        """Evaluation of a field stops at its first failure."""
        result = _validate(factory, {"rules": {"ctx.title": ["required", "min:3"]}}, {"title": ""})
        assert result["errors"] == {"ctx.title": ["The ctx.title field is required."]}
        assert result["error_count"] == 1

    def test_custom_messages(self, factory: StepFactory) -> None:
        """Messages can be overridden per field.rule or per field."""
        params = {
            "rules": {"ctx.title": "min:10", "ctx.body": "required"},
            "messages": {"ctx.title.min": "Title too short", "ctx.body": "Say something"},
        }
        result = _validate(factory, params, {"title": "short"})
        assert result["errors"] == {"ctx.title": ["Title too short"], "ctx.body": ["Say something"]}

    def test_fail_on_error(self, factory: StepFactory) -> None:
        """fail_on_error raises a validation error."""
        with pytest.raises(StepValidationError, match="The ctx.age field must be numeric."):
            _validate(factory, {"rules": {"ctx.age": "numeric"}, "fail_on_error": True}, {"age": "old"})

    def test_requires_rules(self, factory: StepFactory) -> None:
        """rules must be a mapping."""
        assert not factory.create("validate").validate({"with": {"rules": "required"}})


# ============================================================================
# job.dispatch
# ============================================================================


class TestJobHelpers:
    """Tests for parse_delay and resolve_references."""

    @pytest.mark.parametrize(("delay", "seconds"), [(0, 0), ("90", 90), ("2 hours", 7200), ("1 Week", 604800)])
    def test_parse_delay(self, delay: Any, seconds: int) -> None:
        """Numbers and '<n> <unit>' strings convert to seconds."""
        assert parse_delay(delay) == seconds

    @pytest.mark.parametrize("delay", ["soon", "5 fortnights", -1])
    def test_parse_delay_invalid(self, delay: Any) -> None:
        """Unparseable or negative delays are rejected."""
        with pytest.raises(StepConfigError):
            parse_delay(delay)

    def test_resolve_references(self) -> None:
        """Step references resolve inside nested structures."""
        context = {"steps": {"make": {"output": {"id": 3, "tags": ["a"]}}}}
        value = {"ids": ["steps.make.output.id"], "all": "steps.make.output", "text": "steps are fun"}
        assert resolve_references(value, context) == {
            "ids": [3],
            "all": {"id": 3, "tags": ["a"]},
            "text": "steps are fun",
        }


class TestJobRegistry:
    """Tests for JobRegistry and InMemoryJobQueue."""

    def test_resolve_import_target(self) -> None:
        """Import targets are resolved lazily."""
        registry = JobRegistry({"ordered": "collections:OrderedDict"})
        assert registry.resolve("ordered").__name__ == "OrderedDict"

    def test_unknown_job(self) -> None:
        """Unknown names list the registered ones."""
        with pytest.raises(StepConfigError, match="Unknown job: 'nope'. Available: ordered"):
            JobRegistry({"ordered": "collections:OrderedDict"}).resolve("nope")

    def test_unimportable(self) -> None:
        """Targets that do not import are configuration errors."""
        registry = JobRegistry({"ghost": "fragments.nowhere:Ghost"})
        with pytest.raises(StepConfigError, match="Cannot import job 'ghost'"):
            registry.resolve("ghost")

    def test_invalid_target(self) -> None:
        """Targets must use the module:Class format."""
        with pytest.raises(StepConfigError):
            JobRegistry({"bad": "collections.OrderedDict"})

    def test_queue_protocol(self) -> None:
        """The in-memory queue satisfies JobQueue."""
        assert isinstance(InMemoryJobQueue(), JobQueue)


class TestJobDispatchStep:
    """Tests for JobDispatchStep.execute."""

    @pytest.fixture
    def job_factory(self) -> StepFactory:
        services = StepServices(settings={"jobs": {"default_queue": "background"}})
        services.jobs.register("enrich", EnrichFragment)
        return StepFactory(services)

    def test_dispatch(self, job_factory: StepFactory) -> None:
        """The job is built from resolved parameters and queued."""
        context = ExecutionContext.create().with_output("make", {"id": 12})
        step = job_factory.create("job.dispatch")
        result = step.execute(
            {"with": {"job": "enrich", "parameters": {"fragment_id": "steps.make.output.id"}, "delay": "5 minutes"}},
            context,
        )
        assert result["dispatched"] is True
        assert result["queue"] == "background"
        assert result["delay_seconds"] == 300
        assert result["job_class"].endswith("EnrichFragment")
        queue = job_factory.services.job_queue
        assert isinstance(queue, InMemoryJobQueue)
        queued = queue.jobs[0]
        assert queued.job == EnrichFragment(fragment_id=12)
        assert queued.queue == "background"

    def test_positional_parameters(self, job_factory: StepFactory) -> None:
        """A parameter list is passed positionally."""
        step = job_factory.create("job.dispatch")
        step.execute({"with": {"job": "enrich", "parameters": [5, "slow"], "queue": "low"}}, ExecutionContext.create())
        queued = job_factory.services.job_queue.jobs[0]  # type: ignore[attr-defined]
        assert queued.job == EnrichFragment(5, "slow")
        assert queued.queue == "low"

    def test_dry_run(self, job_factory: StepFactory) -> None:
        """Dry runs resolve the job but queue nothing."""
        step = job_factory.create("job.dispatch")
        result = step.execute({"with": {"job": "enrich", "parameters": {"fragment_id": 1}}}, {}, dry_run=True)
        assert result["would_dispatch"] == "enrich"
        assert len(job_factory.services.job_queue) == 0  # type: ignore[arg-type]

    def test_unknown_job(self, job_factory: StepFactory) -> None:
        """Unknown jobs fail before queuing."""
        with pytest.raises(StepConfigError, match="Unknown job"):
            job_factory.create("job.dispatch").execute({"with": {"job": "missing"}}, {})

    def test_bad_parameters(self, job_factory: StepFactory) -> None:
        """Parameters must be a mapping or a list."""
        with pytest.raises(StepConfigError, match="mapping or a list"):
            job_factory.create("job.dispatch").execute({"with": {"job": "enrich", "parameters": "x"}}, {})
