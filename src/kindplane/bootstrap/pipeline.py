"""Staged bootstrap pipeline.

Stages run strictly in order. Each stage applies its desired state and then
waits for it to converge. A required stage that fails stops the pipeline;
an optional stage that fails is recorded as a warning and the run goes on.
Every outcome, including stages that never ran, ends up in the
PipelineResult.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..errors import ConvergenceError, KindplaneError, TransientError
from ..shared import get_logger

logger = get_logger(__name__)

# Exit codes
EXIT_SUCCESS = 0
EXIT_FAILED = 1
EXIT_WARNED = 2
EXIT_CANCELLED = 130

DEFAULT_APPLY_RETRIES = 2
DEFAULT_RETRY_DELAY = 1.0


class StageStatus(Enum):
    """Outcome of a single stage."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    WARNED = "warned"
    CANCELLED = "cancelled"


@dataclass
class Stage:
    """One step of the bootstrap.

    Attributes:
        name: Stage name shown in reports.
        apply: Produces the stage's desired state on the cluster. Runs in a
            worker thread.
        converge: Waits until the applied state is healthy. Receives the
            run's cancellation event.
        required: Failure aborts the pipeline when True, warns otherwise.
        skip_reason: When set, the stage is reported Skipped and not run.
        diagnose: Called after a failure to explain it; returns messages.
    """

    name: str
    apply: Callable[[], Any] | None = None
    converge: Callable[[asyncio.Event], Awaitable[Any]] | None = None
    required: bool = True
    skip_reason: str | None = None
    diagnose: Callable[[], list[str]] | None = None


@dataclass
class StageResult:
    """Result of running one stage."""

    name: str
    status: StageStatus
    reason: str = ""
    required: bool = True
    diagnostics: list[str] = field(default_factory=list)
    duration_seconds: float = 0.0
    error: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "status": self.status.value,
            "reason": self.reason,
            "required": self.required,
            "diagnostics": list(self.diagnostics),
            "duration_seconds": round(self.duration_seconds, 3),
        }
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class PipelineResult:
    """Outcome of a whole bootstrap run."""

    stages: list[StageResult] = field(default_factory=list)
    cancelled: bool = False
    rolled_back: bool = False
    rollback_error: str | None = None

    @property
    def failed(self) -> bool:
        return any(s.status is StageStatus.FAILED for s in self.stages)

    @property
    def warned(self) -> bool:
        return any(s.status is StageStatus.WARNED for s in self.stages)

    @property
    def succeeded(self) -> bool:
        return not self.failed and not self.warned and not self.cancelled

    @property
    def exit_code(self) -> int:
        if self.failed:
            return EXIT_FAILED
        if self.cancelled:
            return EXIT_CANCELLED
        if self.warned:
            return EXIT_WARNED
        return EXIT_SUCCESS

    def stage(self, name: str) -> StageResult | None:
        for result in self.stages:
            if result.name == name:
                return result
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "succeeded": self.succeeded,
            "exit_code": self.exit_code,
            "cancelled": self.cancelled,
            "rolled_back": self.rolled_back,
            "rollback_error": self.rollback_error,
            "stages": [s.to_dict() for s in self.stages],
        }


class BootstrapOrchestrator:
    """Run stages in order with partial-failure semantics."""

    def __init__(
        self,
        apply_retries: int = DEFAULT_APPLY_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        rollback: Callable[[], bool] | None = None,
        on_stage_start: Callable[[Stage], None] | None = None,
        on_stage_end: Callable[[StageResult], None] | None = None,
    ):
        """Initialize orchestrator.

        Args:
            apply_retries: Retries of a stage's apply step after a
                TransientError.
            retry_delay: Base delay between apply retries (seconds).
            rollback: Called after a required stage fails; returns True if
                it actually rolled something back.
            on_stage_start: Optional progress callback.
            on_stage_end: Optional progress callback.
        """
        self.apply_retries = apply_retries
        self.retry_delay = retry_delay
        self.rollback = rollback
        self.on_stage_start = on_stage_start
        self.on_stage_end = on_stage_end

    async def _apply(self, stage: Stage) -> None:
        for attempt in range(self.apply_retries + 1):
            try:
                await asyncio.to_thread(stage.apply)
                return
            except TransientError as e:
                if attempt >= self.apply_retries:
                    raise
                logger.warning(
                    "stage_apply_retry",
                    stage=stage.name,
                    attempt=attempt + 1,
                    max_retries=self.apply_retries,
                    error=e.message,
                )
                await asyncio.sleep(self.retry_delay * (2**attempt))

    def _diagnose(self, stage: Stage) -> list[str]:
        if stage.diagnose is None:
            return []
        try:
            return stage.diagnose()
        except KindplaneError as e:
            logger.warning("stage_diagnostics_failed", stage=stage.name, error=e.message)
            return [f"diagnostics unavailable: {e.message}"]

    async def _run_stage(self, stage: Stage, cancel_event: asyncio.Event) -> StageResult:
        started = time.monotonic()
        try:
            if stage.apply is not None:
                await self._apply(stage)
            if stage.converge is not None:
                await stage.converge(cancel_event)
        except ConvergenceError as e:
            if not cancel_event.is_set():
                result = await self._failed(stage, e)
            else:
                result = StageResult(
                    name=stage.name,
                    status=StageStatus.CANCELLED,
                    reason="cancelled",
                    required=stage.required,
                    error=e.to_dict(),
                )
                logger.warning("stage_cancelled", stage=stage.name)
        except KindplaneError as e:
            result = await self._failed(stage, e)
        else:
            result = StageResult(name=stage.name, status=StageStatus.SUCCEEDED, required=stage.required)
            logger.info("stage_succeeded", stage=stage.name)
        result.duration_seconds = time.monotonic() - started
        return result

    async def _failed(self, stage: Stage, e: KindplaneError) -> StageResult:
        status = StageStatus.FAILED if stage.required else StageStatus.WARNED
        result = StageResult(
            name=stage.name,
            status=status,
            reason=e.message,
            required=stage.required,
            diagnostics=await asyncio.to_thread(self._diagnose, stage),
            error=e.to_dict(),
        )
        log = logger.error if stage.required else logger.warning
        log("stage_failed", stage=stage.name, required=stage.required, reason=e.message)
        return result

    async def run(self, stages: list[Stage], cancel_event: asyncio.Event | None = None) -> PipelineResult:
        """Run every stage in order.

        Args:
            stages: Stages in execution order.
            cancel_event: Set to stop in-flight waits and skip the rest. A stage
                whose wait is cancelled is reported Cancelled and does not
                trigger rollback.

        Returns:
            PipelineResult with one entry per stage.
        """
        cancel_event = cancel_event or asyncio.Event()
        result = PipelineResult()
        aborted_by: str | None = None

        for stage in stages:
            if aborted_by is not None:
                skip_reason: str | None = f"not run: {aborted_by} failed"
            elif cancel_event.is_set():
                skip_reason = "cancelled"
            else:
                skip_reason = stage.skip_reason

            if skip_reason is not None:
                stage_result = StageResult(
                    name=stage.name,
                    status=StageStatus.SKIPPED,
                    reason=skip_reason,
                    required=stage.required,
                )
                result.stages.append(stage_result)
                if self.on_stage_end:
                    self.on_stage_end(stage_result)
                continue

            if self.on_stage_start:
                self.on_stage_start(stage)
            logger.info("stage_started", stage=stage.name)

            stage_result = await self._run_stage(stage, cancel_event)
            result.stages.append(stage_result)
            if self.on_stage_end:
                self.on_stage_end(stage_result)

            if stage_result.status is StageStatus.FAILED:
                aborted_by = stage.name

        result.cancelled = cancel_event.is_set()
        if aborted_by is not None and self.rollback is not None:
            try:
                result.rolled_back = await asyncio.to_thread(self.rollback)
            except KindplaneError as e:
                result.rollback_error = e.message
                logger.error("rollback_failed", error=e.message)

        return result

    def run_sync(self, stages: list[Stage]) -> PipelineResult:
        """Synchronous wrapper for run."""
        return asyncio.run(self.run(stages))
