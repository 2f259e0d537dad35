"""
EscalationSweep -- periodic escalation of overdue workflow instances.

Contract:
    ``run(as_of)`` loads the clocks of every active instance, asks
    ``procure_engines.escalation.due_for_escalation`` which are overdue and
    escalates each one in its own session and transaction.  ``start()`` /
    ``stop()`` run the sweep on a background thread every
    ``interval_seconds``.

Architecture: procure_services.  Decides with the pure escalation engine,
    mutates through ``WorkflowInstanceService.escalate``.

Invariants enforced:
    - One transaction per instance; a failure never rolls back another
      instance's escalation.
    - The escalation is applied against the version the sweep read.  A user
      transition that committed in between wins and the instance is skipped.
    - All timestamps from the injected Clock.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from sqlalchemy.orm import Session

from procure_engines.escalation import due_for_escalation
from procure_kernel.domain.clock import Clock, SystemClock
from procure_kernel.exceptions import (
    ConcurrencyConflictError,
    EntityNotFoundError,
    InvalidTransitionError,
)
from procure_kernel.logging_config import get_logger
from procure_modules.application_workflow.service import WorkflowInstanceService

logger = get_logger("services.escalation_sweep")


@dataclass(frozen=True)
class EscalationRunResult:
    as_of: datetime
    examined: int
    escalated: tuple[UUID, ...] = ()
    skipped: tuple[UUID, ...] = ()
    failed: tuple[UUID, ...] = field(default_factory=tuple)


class EscalationSweep:
    """Escalates active instances whose step or processing window elapsed."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
        escalation_targets: Mapping[str, UUID] | None = None,
        interval_seconds: int = 900,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._targets = dict(escalation_targets or {})
        self._interval = interval_seconds
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def run(self, as_of: datetime | None = None) -> EscalationRunResult:
        as_of = as_of or self._clock.now()

        session = self._session_factory()
        try:
            clocks = self._service(session).active_clocks()
            session.rollback()
        finally:
            session.close()

        due = due_for_escalation(clocks, as_of=as_of)
        escalated: list[UUID] = []
        skipped: list[UUID] = []
        failed: list[UUID] = []

        for item in due:
            instance_id = item.instance.instance_id
            session = self._session_factory()
            try:
                self._service(session).escalate(
                    instance_id,
                    reason=item.reason,
                    expected_version=item.instance.version,
                )
            except (ConcurrencyConflictError, InvalidTransitionError, EntityNotFoundError) as exc:
                skipped.append(instance_id)
                logger.info(
                    "escalation_skipped",
                    extra={"instance_id": str(instance_id), "error": str(exc)},
                )
            except Exception:
                failed.append(instance_id)
                logger.exception("escalation_failed", extra={"instance_id": str(instance_id)})
            else:
                escalated.append(instance_id)
                logger.info(
                    "escalation_fired",
                    extra={
                        "instance_id": str(instance_id),
                        "current_step": item.instance.current_step,
                        "deadline": item.deadline.isoformat(),
                        "reason": item.reason,
                    },
                )
            finally:
                session.close()

        result = EscalationRunResult(
            as_of=as_of,
            examined=len(clocks),
            escalated=tuple(escalated),
            skipped=tuple(skipped),
            failed=tuple(failed),
        )
        logger.info(
            "escalation_sweep_completed",
            extra={
                "as_of": as_of.isoformat(),
                "examined": result.examined,
                "escalated": len(result.escalated),
                "skipped": len(result.skipped),
                "failed": len(result.failed),
            },
        )
        return result

    def start(self) -> None:
        """Run the sweep on a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="escalation-sweep",
            daemon=True,
        )
        self._thread.start()
        logger.info("escalation_sweep_started", extra={"interval_seconds": self._interval})

    def stop(self, timeout: float = 30.0) -> None:
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("escalation_sweep_stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _service(self, session: Session) -> WorkflowInstanceService:
        return WorkflowInstanceService(
            session, clock=self._clock, escalation_targets=self._targets
        )

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.run()
            except Exception:
                logger.exception("escalation_sweep_tick_failed")
            self._stop_event.wait(timeout=self._interval)
