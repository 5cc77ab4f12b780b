"""
Reconciliation of validated rows against a wholesaler's existing catalog.

Classification never depends on the import mode:
    NEW        code not in the catalog
    DUPLICATE  code in the catalog, identical content
    UPDATE     code in the catalog, at least one field differs

The mode only decides what happens to each class (build_import_plan).
Within one file the first occurrence of a code wins; later occurrences are
marked INVALID.
"""

from typing import Iterable, Iterator, Mapping, Optional

from models.catalog import (
    FieldError,
    ImportMode,
    ImportPlan,
    PlanAction,
    PlanItem,
    ProductRecord,
    ReconciliationNote,
    RowOutcome,
    RowStatus,
)
from parsers.catalog_parser import COLUMN_HEADERS


class Reconciler:
    """
    Stateful classifier for one pass over a file.

    Tracks the product codes already seen so repeated codes in the same
    upload are caught.
    """

    def __init__(self, existing: Mapping[str, ProductRecord]):
        self._existing = existing
        self._first_seen: dict[str, int] = {}

    def reconcile(self, outcome: RowOutcome) -> RowOutcome:
        """Classify one outcome. Invalid outcomes pass through unchanged."""
        if outcome.status != RowStatus.VALID or outcome.record is None:
            return outcome

        record = outcome.record
        code = record.product_code

        first_row = self._first_seen.get(code)
        if first_row is not None:
            return outcome.model_copy(update={
                "status": RowStatus.INVALID,
                "record": None,
                "field_errors": [FieldError(
                    field="product_code",
                    column=COLUMN_HEADERS["product_code"],
                    message=f"Duplicate within file: '{code}' already appears on row {first_row}",
                )],
            })
        self._first_seen[code] = outcome.row_number

        current = self._existing.get(code)
        if current is None:
            return outcome.model_copy(update={"status": RowStatus.NEW})

        changed = record.changed_fields(current)
        if not changed:
            return outcome.model_copy(update={"status": RowStatus.DUPLICATE})
        return outcome.model_copy(update={
            "status": RowStatus.UPDATE,
            "changed_fields": changed,
        })

    def reconcile_all(self, outcomes: Iterable[RowOutcome]) -> Iterator[RowOutcome]:
        for outcome in outcomes:
            yield self.reconcile(outcome)


# ===================
# IMPORT PLAN
# ===================

def _plan_action(mode: ImportMode, status: RowStatus) -> PlanAction:
    if mode == ImportMode.REPLACE:
        return PlanAction.INSERT
    if status == RowStatus.NEW:
        return PlanAction.INSERT
    if mode == ImportMode.UPDATE and status == RowStatus.UPDATE:
        return PlanAction.UPDATE
    return PlanAction.SKIP


def _plan_note(mode: ImportMode, outcome: RowOutcome, action: PlanAction) -> Optional[str]:
    code = outcome.product_code
    if action == PlanAction.UPDATE:
        return f"Overwriting {code}: changed {', '.join(outcome.changed_fields)}"
    if action != PlanAction.SKIP:
        return None
    if outcome.status == RowStatus.DUPLICATE:
        return f"Skipped {code}: already in catalog with identical content"
    return (
        f"Skipped {code}: already in catalog "
        f"({', '.join(outcome.changed_fields)} differ; {mode.value} mode keeps existing)"
    )


def build_import_plan(
    wholesaler_id: str,
    mode: ImportMode,
    outcomes: Iterable[RowOutcome],
) -> ImportPlan:
    """
    Turn reconciled outcomes into an ImportPlan.

    Args:
        wholesaler_id: Catalog owner
        mode: REPLACE, APPEND or UPDATE
        outcomes: Reconciled outcomes in file order

    Returns:
        ImportPlan with one item per valid row
    """
    total_rows = 0
    invalid = 0
    items: list[PlanItem] = []

    for outcome in outcomes:
        total_rows += 1
        if outcome.status == RowStatus.INVALID or outcome.record is None:
            invalid += 1
            continue

        action = _plan_action(mode, outcome.status)
        items.append(PlanItem(
            row_number=outcome.row_number,
            action=action,
            status=outcome.status,
            record=outcome.record,
            note=_plan_note(mode, outcome, action),
        ))

    return ImportPlan(
        wholesaler_id=wholesaler_id,
        mode=mode,
        total_rows=total_rows,
        invalid=invalid,
        items=items,
    )


def plan_notes(plan: ImportPlan) -> list[ReconciliationNote]:
    """Notes for every row the plan skips or overwrites."""
    return [
        ReconciliationNote(
            row_number=item.row_number,
            product_code=item.record.product_code,
            status=item.status,
            action=item.action,
            message=item.note,
        )
        for item in plan.items
        if item.note
    ]
