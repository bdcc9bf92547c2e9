"""
Input Validation for the Settlement Engine

Validates caller input before any state is touched.
Raises ValidationError listing every constraint violation found.
"""

import re
from datetime import datetime

from .errors import ValidationError
from .models import (
    AdjustmentRequest,
    ClosureOptions,
    Payout,
    PayoutMethod,
    PayoutStatus,
    SettlementQuery,
    WizardScope,
)

PERIOD_PATTERN = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")

NAME_MAX_LENGTH = 100
NOTES_MAX_LENGTH = 1000
REASON_MAX_LENGTH = 500
MAX_PAGE_SIZE = 100

EDITABLE_FIELDS = {"name", "notes"}
SORTABLE_FIELDS = {"created_at", "updated_at", "name", "period", "gross", "net", "status", "lines_count"}


def _raise_if(errors: list[str]) -> None:
    if errors:
        raise ValidationError(errors)


class InputValidator:
    """Validates settlement input according to business rules."""

    def validate_period(self, period: str | None) -> None:
        _raise_if(self._period_errors(period))

    def validate_scope(self, scope: WizardScope) -> None:
        """Stage 1: period and scope are mandatory."""
        errors = self._period_errors(scope.period)

        if scope.scope_kind is None:
            errors.append("scope_kind is required")
        if not scope.scope_id or not scope.scope_id.strip():
            errors.append("scope_id is required")
        if not isinstance(scope.only_approved, bool):
            errors.append(f"only_approved must be a boolean, got: {scope.only_approved!r}")

        _raise_if(errors)

    def validate_selection(self, selected_ids: list[str], eligible_ids: set[str]) -> None:
        """Stage 2: at least one eligible item, no duplicates."""
        if not selected_ids:
            raise ValidationError("at least one commission item must be selected")

        errors = []
        if len(set(selected_ids)) != len(selected_ids):
            errors.append("selected commission items contain duplicates")

        unknown = [item_id for item_id in selected_ids if item_id not in eligible_ids]
        if unknown:
            errors.append(f"commission items not eligible for this scope: {', '.join(sorted(set(unknown)))}")

        _raise_if(errors)

    def validate_finalize(self, name: str, notes: str | None) -> None:
        """Stage 4: settlement name and notes."""
        errors = self._name_errors(name)
        errors.extend(self._notes_errors(notes))
        _raise_if(errors)

    def validate_update(self, partial: dict) -> None:
        if not partial:
            raise ValidationError("no fields to update")

        errors = []
        unknown = set(partial) - EDITABLE_FIELDS
        if unknown:
            errors.append(f"fields not editable: {', '.join(sorted(unknown))}")
        if "name" in partial:
            errors.extend(self._name_errors(partial["name"]))
        if "notes" in partial:
            errors.extend(self._notes_errors(partial["notes"]))

        _raise_if(errors)

    def validate_adjustment(self, request: AdjustmentRequest) -> None:
        """
        Exactly one of amount/percent, percent within [-100, 100],
        and a mandatory justification.
        """
        errors = []

        if not request.line_id:
            errors.append("line_id is required")

        has_amount = request.amount is not None
        has_percent = request.percent is not None
        if has_amount and has_percent:
            errors.append("provide either an amount or a percentage, not both")
        elif not has_amount and not has_percent:
            errors.append("an amount or a percentage is required")

        if has_amount and not request.amount.is_finite():
            errors.append(f"amount must be a finite number, got: {request.amount}")
            has_amount = False
        if has_percent and not request.percent.is_finite():
            errors.append(f"percentage must be a finite number, got: {request.percent}")
            has_percent = False

        if has_percent and not (-100 <= request.percent <= 100):
            errors.append(f"percentage must be between -100 and 100, got: {request.percent}")

        reason = (request.reason or "").strip()
        if not reason:
            errors.append("reason is required")
        elif len(reason) > REASON_MAX_LENGTH:
            errors.append(f"reason cannot exceed {REASON_MAX_LENGTH} characters")

        _raise_if(errors)

    def validate_closure(self, options: ClosureOptions) -> None:
        """Closing requires an explicit accounting choice and confirmation."""
        errors = []

        if not isinstance(options.create_accounting_entry, bool):
            errors.append("create_accounting_entry must be explicitly true or false")
        if options.confirmed is not True:
            errors.append("closure must be confirmed")
        errors.extend(self._notes_errors(options.notes))

        _raise_if(errors)

    def validate_payout_transition(
        self, payout: Payout, status: PayoutStatus, paid_at: datetime | None
    ) -> None:
        errors = []

        if status == PayoutStatus.SENT:
            if paid_at is None:
                errors.append("paid_at is required when marking a payout as sent")
            if payout.method == PayoutMethod.TRANSFER and not payout.iban:
                errors.append("an IBAN is required to send a transfer payout")
            if payout.net <= 0:
                errors.append(f"payout net must be positive to be sent, got: {payout.net}")

        _raise_if(errors)

    def validate_query(self, query: SettlementQuery) -> None:
        errors = []

        if query.period:
            errors.extend(self._period_errors(query.period))
        if query.page < 1:
            errors.append(f"page must be at least 1, got: {query.page}")
        if not (1 <= query.size <= MAX_PAGE_SIZE):
            errors.append(f"size must be between 1 and {MAX_PAGE_SIZE}, got: {query.size}")

        field = query.sort[1:] if query.sort.startswith("-") else query.sort
        if field not in SORTABLE_FIELDS:
            errors.append(f"cannot sort by: {field}")

        for label, value in (("from", query.date_from), ("to", query.date_to)):
            if value:
                try:
                    datetime.strptime(value, "%Y-%m-%d")
                except ValueError:
                    errors.append(f"{label} must be a YYYY-MM-DD date, got: {value}")

        _raise_if(errors)

    def _period_errors(self, period: str | None) -> list[str]:
        if not period:
            return ["period is required"]
        if not PERIOD_PATTERN.match(period):
            return [f"period must use the YYYY-MM format, got: {period}"]
        return []

    def _name_errors(self, name) -> list[str]:
        if not isinstance(name, str) or not name.strip():
            return ["name is required"]
        if len(name.strip()) > NAME_MAX_LENGTH:
            return [f"name cannot exceed {NAME_MAX_LENGTH} characters"]
        return []

    def _notes_errors(self, notes) -> list[str]:
        if notes is None:
            return []
        if not isinstance(notes, str):
            return ["notes must be text"]
        if len(notes) > NOTES_MAX_LENGTH:
            return [f"notes cannot exceed {NOTES_MAX_LENGTH} characters"]
        return []
