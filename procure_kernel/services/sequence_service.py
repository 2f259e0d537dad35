"""
SequenceService -- monotonic sequence allocation via locked counter rows.

Responsibility:
    Hands out strictly increasing numbers for the audit log.  The counter
    row is read with ``SELECT ... FOR UPDATE``, so concurrent appenders queue
    on it until the holder commits or rolls back.

Architecture position:
    Kernel > Services.  Called by AuditLogService.

Invariants enforced:
    - Never max(seq) + 1: the locked counter row is the only source of the
      next value.
    - The increment is part of the caller's transaction; a rollback hands
      the value back.
    - While the lock is held no other transaction can append, so the chain
      head read after allocation is the entry immediately before ours.

Failure modes:
    - IntegrityError while two transactions create a missing counter row at
      once; the loser rolls back its savepoint and locks the winner's row.
"""

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from procure_kernel.logging_config import get_logger
from procure_kernel.models.sequence_counter import SequenceCounter

logger = get_logger("services.sequence")


class SequenceService:
    """Transactional named sequences.  Never commits."""

    AUDIT_LOG = "audit_log"

    def __init__(self, session: Session):
        self._session = session

    def _locked(self, sequence_name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def next_value(self, sequence_name: str) -> int:
        """
        Lock the counter row, increment it and return the new value.

        Postconditions:
            - The returned value is > 0 and greater than every value handed
              out for ``sequence_name`` by committed transactions.
            - The counter row stays locked until the caller's transaction ends.
        """
        counter = self._locked(sequence_name)

        if counter is None:
            savepoint = self._session.begin_nested()
            try:
                counter = SequenceCounter(name=sequence_name, current_value=1)
                self._session.add(counter)
                self._session.flush()
                savepoint.commit()
                logger.debug("sequence_allocated", extra={"sequence_name": sequence_name, "value": 1})
                return 1
            except IntegrityError:
                logger.debug("sequence_counter_race_retry", extra={"sequence_name": sequence_name})
                savepoint.rollback()
                counter = self._locked(sequence_name)
                if counter is None:
                    raise

        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, sequence_name: str) -> int | None:
        counter = self._session.execute(
            select(SequenceCounter).where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()
        return counter.current_value if counter else None

    def initialize_sequences(self) -> None:
        """Create the well-known counter rows at zero if missing."""
        for name in (self.AUDIT_LOG,):
            if self.current_value(name) is None:
                self._session.add(SequenceCounter(name=name, current_value=0))
        self._session.flush()
