"""Tests for input validation."""

import pytest
from datetime import datetime, timezone
from decimal import Decimal

from settlements.errors import ValidationError
from settlements.models import (
    AdjustmentRequest,
    ClosureOptions,
    Payout,
    PayoutMethod,
    PayoutStatus,
    ScopeKind,
    SettlementQuery,
    WizardScope,
)
from settlements.validators import InputValidator


@pytest.fixture
def validator():
    return InputValidator()


class TestScopeValidation:

    def test_valid_scope(self, validator):
        validator.validate_scope(WizardScope(period="2025-03", scope_kind=ScopeKind.TEAM, scope_id="team-a"))

    @pytest.mark.parametrize("period", ["", "2025-3", "2025-13", "03-2025", "2025/03"])
    def test_bad_period(self, validator, period):
        with pytest.raises(ValidationError):
            validator.validate_period(period)

    def test_reports_every_problem(self, validator):
        with pytest.raises(ValidationError) as exc_info:
            validator.validate_scope(WizardScope(period="", scope_kind=None, scope_id=" "))

        assert len(exc_info.value.errors) == 3

    def test_validation_error_is_value_error(self, validator):
        with pytest.raises(ValueError):
            validator.validate_period("nope")


class TestSelectionValidation:

    def test_empty_selection(self, validator):
        with pytest.raises(ValidationError, match="at least one"):
            validator.validate_selection([], {"ci-1"})

    def test_duplicates(self, validator):
        with pytest.raises(ValidationError, match="duplicates"):
            validator.validate_selection(["ci-1", "ci-1"], {"ci-1"})

    def test_not_eligible(self, validator):
        with pytest.raises(ValidationError, match="ci-9"):
            validator.validate_selection(["ci-1", "ci-9"], {"ci-1"})


class TestFinalizeAndUpdate:

    def test_name_required(self, validator):
        with pytest.raises(ValidationError, match="name is required"):
            validator.validate_finalize("   ", None)

    def test_name_max_length(self, validator):
        validator.validate_finalize("x" * 100, None)
        with pytest.raises(ValidationError):
            validator.validate_finalize("x" * 101, None)

    def test_notes_max_length(self, validator):
        with pytest.raises(ValidationError, match="notes"):
            validator.validate_finalize("March", "n" * 1001)

    def test_update_only_name_and_notes(self, validator):
        validator.validate_update({"name": "Renamed", "notes": None})
        with pytest.raises(ValidationError, match="not editable"):
            validator.validate_update({"status": "CLOSED"})

    def test_empty_update(self, validator):
        with pytest.raises(ValidationError):
            validator.validate_update({})


class TestAdjustmentValidation:

    def test_valid_percentage(self, validator):
        validator.validate_adjustment(AdjustmentRequest(line_id="l1", reason="Late docs", percent=Decimal("-10")))

    def test_amount_and_percent_exclusive(self, validator):
        request = AdjustmentRequest(line_id="l1", reason="x", amount=Decimal("5"), percent=Decimal("5"))
        with pytest.raises(ValidationError, match="not both"):
            validator.validate_adjustment(request)

    def test_one_of_required(self, validator):
        with pytest.raises(ValidationError, match="required"):
            validator.validate_adjustment(AdjustmentRequest(line_id="l1", reason="x"))

    @pytest.mark.parametrize("percent", ["-100.01", "150"])
    def test_percentage_range(self, validator, percent):
        request = AdjustmentRequest(line_id="l1", reason="x", percent=Decimal(percent))
        with pytest.raises(ValidationError, match="between -100 and 100"):
            validator.validate_adjustment(request)

    @pytest.mark.parametrize("field,value", [
        ("amount", "NaN"),
        ("amount", "Infinity"),
        ("percent", "NaN"),
        ("percent", "-Infinity"),
    ])
    def test_non_finite_values(self, validator, field, value):
        request = AdjustmentRequest(line_id="l1", reason="x", **{field: Decimal(value)})
        with pytest.raises(ValidationError, match="finite"):
            validator.validate_adjustment(request)

    def test_reason_required(self, validator):
        with pytest.raises(ValidationError, match="reason"):
            validator.validate_adjustment(AdjustmentRequest(line_id="l1", reason="  ", amount=Decimal("5")))

    def test_from_dict_type_value_form(self):
        request = AdjustmentRequest.from_dict({"line_id": "l1", "type": "PERCENT", "value": -10, "reason": "r"})
        assert request.percent == Decimal("-10")
        assert request.amount is None


class TestClosureValidation:

    def test_accounting_choice_must_be_boolean(self, validator):
        with pytest.raises(ValidationError, match="explicitly"):
            validator.validate_closure(ClosureOptions(confirmed=True, create_accounting_entry="yes"))

    def test_missing_accounting_choice(self, validator):
        with pytest.raises(ValidationError):
            validator.validate_closure(ClosureOptions(confirmed=True))

    def test_confirmation_required(self, validator):
        with pytest.raises(ValidationError, match="confirmed"):
            validator.validate_closure(ClosureOptions(confirmed=False, create_accounting_entry=False))

    def test_valid_options(self, validator):
        validator.validate_closure(ClosureOptions.from_dict(
            {"confirmed": True, "create_accounting_entry": True, "accounting_notes": "Q1"}
        ))


class TestPayoutTransitionValidation:

    @pytest.fixture
    def payout(self):
        return Payout(
            id="pay-1",
            settlement_id="stl-1",
            agent_id="ag-1",
            gross=Decimal("60"),
            adjustments=Decimal("0"),
            withholdings=Decimal("9"),
            net=Decimal("51"),
            created_at=datetime(2025, 3, 31, tzinfo=timezone.utc),
            iban="ES9121000418450200051332",
        )

    def test_sent_requires_paid_at(self, validator, payout):
        with pytest.raises(ValidationError, match="paid_at"):
            validator.validate_payout_transition(payout, PayoutStatus.SENT, None)

    def test_transfer_requires_iban(self, validator, payout):
        payout.iban = None
        with pytest.raises(ValidationError, match="IBAN"):
            validator.validate_payout_transition(payout, PayoutStatus.SENT, datetime.now(timezone.utc))

    def test_cash_without_iban(self, validator, payout):
        payout.iban = None
        payout.method = PayoutMethod.CASH
        validator.validate_payout_transition(payout, PayoutStatus.SENT, datetime.now(timezone.utc))


class TestQueryValidation:

    def test_defaults_are_valid(self, validator):
        validator.validate_query(SettlementQuery())

    def test_page_size_capped(self, validator):
        with pytest.raises(ValidationError, match="size"):
            validator.validate_query(SettlementQuery(size=101))

    def test_unknown_sort_field(self, validator):
        with pytest.raises(ValidationError, match="sort"):
            validator.validate_query(SettlementQuery(sort="-password"))

    def test_bad_dates(self, validator):
        with pytest.raises(ValidationError, match="from"):
            validator.validate_query(SettlementQuery(date_from="31/03/2025"))
