"""Folding cleaner step results into the run outcome."""

from typing import Iterable, List

from infra_reconcile.cleaners.base import StepResult, StepStatus
from infra_reconcile.state.models import ReconciliationOutcome
from infra_reconcile.utils.errors import ErrorCategory

# Actions whose success removes the referenced object
REMOVING_ACTIONS = ('delete', 'release', 'kubectl_delete')


def record_step_results(
    outcome: ReconciliationOutcome,
    step: str,
    results: Iterable[StepResult],
    category: ErrorCategory = ErrorCategory.CLEANUP
) -> List[StepResult]:
    """Record removed objects and failures of one step.

    Args:
        outcome: Run outcome to update
        step: Step name stored on failure records
        results: Results reported by a cleaner
        category: Category stored on failure records

    Returns:
        The failed results
    """
    failed = []
    for result in results:
        if result.status == StepStatus.FAILED:
            outcome.record_failure(
                step=step,
                message=result.message,
                resource=result.ref,
                category=category.value,
                error_code=result.error_code,
            )
            failed.append(result)
        elif result.status == StepStatus.DONE and result.action.startswith(REMOVING_ACTIONS):
            if result.ref not in outcome.destroyed:
                outcome.destroyed.append(result.ref)
    return failed
