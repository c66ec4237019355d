"""
Booking saga - ordered step pipeline with compensation

Each step takes the accumulated context and returns it (possibly updated)
or a StepFailure. When a step fails, the compensation registered for every
earlier completed step runs in reverse order, unless the failing step opts
out with ``compensate_on_failure=False``.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar, Union

from ...errors import BookingError, ErrorKind, error_for_kind

logger = logging.getLogger(__name__)

C = TypeVar("C")


class BookingState(str, Enum):
    VALIDATING = "validating"
    CUSTOMER_RESOLVED = "customer_resolved"
    PAYMENT_AUTHORIZED = "payment_authorized"
    EXTERNALLY_BOOKED = "externally_booked"
    PERSISTED = "persisted"
    # Terminal failures
    REJECTED_INPUT = "rejected_input"
    PAYMENT_DECLINED = "payment_declined"
    BOOKING_CONFLICT = "booking_conflict"
    INCONSISTENT = "inconsistent"


@dataclass
class StepFailure:
    kind: ErrorKind
    state: BookingState
    step: str = ""
    message: Optional[str] = None
    cause: Optional[BaseException] = None

    def to_error(self) -> BookingError:
        detail = f"{self.step}: {self.cause}" if self.cause else self.step
        error = error_for_kind(self.kind, self.message, detail=detail)
        error.__cause__ = self.cause
        return error


StepAction = Callable[[C], Awaitable[Union[C, StepFailure]]]
Compensation = Callable[[C], Awaitable[Any]]


@dataclass(frozen=True)
class SagaStep(Generic[C]):
    name: str
    action: StepAction
    failure_state: BookingState
    # State entered once the step succeeds; None keeps the current one
    success_state: Optional[BookingState] = None
    # Kind used when the action raises something that is not a BookingError
    failure_kind: ErrorKind = ErrorKind.UPSTREAM_ERROR
    classify: Optional[Callable[[BaseException], ErrorKind]] = None
    compensate_on_failure: bool = True

    def failure_from(self, exc: BaseException) -> StepFailure:
        if self.classify is not None:
            kind = self.classify(exc)
        elif isinstance(exc, BookingError):
            kind = exc.kind
        else:
            kind = self.failure_kind
        message = exc.message if isinstance(exc, BookingError) and exc.kind == kind else None
        return StepFailure(kind=kind, state=self.failure_state, step=self.name, message=message, cause=exc)


@dataclass
class SagaOutcome(Generic[C]):
    context: C
    state: BookingState
    completed: list[str] = field(default_factory=list)
    compensated: list[str] = field(default_factory=list)
    failure: Optional[StepFailure] = None
    # Set when an undo action itself raised; ``failure`` then becomes
    # compensation_failed and the step failure moves to ``original_failure``
    compensation_error: Optional[BaseException] = None
    original_failure: Optional[StepFailure] = None

    @property
    def succeeded(self) -> bool:
        return self.failure is None


class Saga(Generic[C]):
    def __init__(self, steps: list[SagaStep], compensations: Optional[dict[str, Compensation]] = None):
        names = [s.name for s in steps]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate saga step names: {names}")
        unknown = set(compensations or {}) - set(names)
        if unknown:
            raise ValueError(f"Compensations registered for unknown steps: {sorted(unknown)}")

        self.steps = steps
        self.compensations = compensations or {}

    async def run(self, context: C) -> SagaOutcome:
        outcome = SagaOutcome(context=context, state=BookingState.VALIDATING)

        for step in self.steps:
            try:
                result = await step.action(outcome.context)
            except Exception as e:
                result = step.failure_from(e)

            if isinstance(result, StepFailure):
                result.step = result.step or step.name
                outcome.failure = result
                outcome.state = result.state
                logger.warning(f"Saga step '{step.name}' failed ({result.kind.value}) -> {result.state.value}")
                if step.compensate_on_failure:
                    await self._compensate(outcome)
                return outcome

            outcome.context = result
            outcome.completed.append(step.name)
            if step.success_state is not None and step.success_state != outcome.state:
                logger.info(f"Saga {outcome.state.value} -> {step.success_state.value} after '{step.name}'")
                outcome.state = step.success_state

        return outcome

    async def _compensate(self, outcome: SagaOutcome) -> None:
        for name in reversed(outcome.completed):
            undo = self.compensations.get(name)
            if undo is None:
                continue
            try:
                await undo(outcome.context)
            except Exception as e:
                logger.error(f"❌ Compensation for '{name}' failed: {e}")
                if outcome.compensation_error is None:
                    outcome.compensation_error = e
                continue
            outcome.compensated.append(name)
            logger.info(f"↩️ Compensated saga step '{name}'")

        if outcome.compensation_error is not None:
            original = outcome.failure
            outcome.original_failure = original
            outcome.failure = StepFailure(
                kind=ErrorKind.COMPENSATION_FAILED,
                state=original.state,
                step=original.step,
                cause=outcome.compensation_error,
            )
