"""Credit ledger - scoped reservations for billed steps."""

from typing import Optional
import logging

from ..errors import InsufficientCreditsError
from ..models import WorkflowRun

logger = logging.getLogger(__name__)


class CreditReservation:
    """
    Credits held for one billed step.

    Usage:
        async with ledger.reserve(run, estimate, step_id) as reservation:
            result = await call_provider()
            reservation.commit(result.cost)
        # On exit the hold is always released; only committed credits stay
    """

    def __init__(self, run: WorkflowRun, amount: float, step_id: Optional[str] = None):
        self.run = run
        self.amount = max(0.0, amount)
        self.step_id = step_id
        self.committed: Optional[float] = None

    async def __aenter__(self) -> "CreditReservation":
        available = self.run.available_credits
        if available is not None and self.amount > available:
            raise InsufficientCreditsError(self.step_id or "?", self.amount, available)

        self.run.credits_reserved += self.amount
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.run.credits_reserved = max(0.0, self.run.credits_reserved - self.amount)

        if exc_type is not None and self.committed is None:
            logger.debug(
                f"Released {self.amount:g} credits for run {self.run.id} "
                f"step {self.step_id}: {exc_type.__name__}"
            )
        return False

    def commit(self, actual: float) -> None:
        """Charge the actual cost to the run (and step, if any)."""
        if self.committed is not None:
            raise RuntimeError("Reservation already committed")

        self.committed = actual
        self.run.credits_used += actual
        if self.step_id is not None:
            self.run.step(self.step_id).credits_used += actual


class CreditLedger:
    """Reserve/commit/release of run credits."""

    def reserve(
        self,
        run: WorkflowRun,
        amount: float,
        step_id: Optional[str] = None,
    ) -> CreditReservation:
        """
        Hold ``amount`` credits on a run for the duration of a block.

        Raises (on entry):
            InsufficientCreditsError: If the hold would exceed the run budget
        """
        return CreditReservation(run, amount, step_id)
