from __future__ import annotations

from typing import Iterable, List

from ..infra.models import (
    EMPTY,
    FAILED,
    FAILURE,
    SUCCEEDED,
    SUCCEEDED_WITH_ISSUES,
    SUCCESS,
    LedgerRow,
    StageVerdict,
)


def reduce_stage_verdict(rows: Iterable[LedgerRow]) -> StageVerdict:
    """Compute the canonical stage verdict from ledger rows.

    Canonical outputs:
      - EMPTY: no SUCCESS and no FAILURE rows (also every freshly initialized ledger)
      - FAILED: FAILURE rows only
      - SUCCEEDED: SUCCESS rows only
      - SUCCEEDED_WITH_ISSUES: both; dependents run on the SUCCESS subset

    Rows still PENDING or IN_PROGRESS are counted in ``pending`` but never
    contribute to the verdict.
    """

    rows = list(rows)
    succeeded = sum(1 for r in rows if r.state == SUCCESS)
    failed = sum(1 for r in rows if r.state == FAILURE)
    pending = len(rows) - succeeded - failed

    if succeeded == 0 and failed == 0:
        verdict = EMPTY
    elif succeeded == 0:
        verdict = FAILED
    elif failed == 0:
        verdict = SUCCEEDED
    else:
        verdict = SUCCEEDED_WITH_ISSUES

    return StageVerdict(verdict=verdict, total=len(rows), succeeded=succeeded, failed=failed, pending=pending)


def success_rows(rows: Iterable[LedgerRow]) -> List[LedgerRow]:
    return [r for r in rows if r.state == SUCCESS]


def failure_rows(rows: Iterable[LedgerRow]) -> List[LedgerRow]:
    return [r for r in rows if r.state == FAILURE]
