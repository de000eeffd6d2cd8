"""
Tests for payment signal normalization, classification and the status transition guard.
"""
import pytest

from domain.enums import GatewayStatus, NotificationKind, Outcome, PaymentStatus
from services.payment_resolver import (
    can_transition,
    classify,
    clean_text,
    normalize_signal,
    normalize_status,
    outcome_to_notification,
    outcome_to_payment_status,
    signal_from_redirect,
)


def resolve(**params):
    return classify(signal_from_redirect(params))


class TestNormalization:

    @pytest.mark.unit
    @pytest.mark.parametrize("value", [None, "", "   ", "null", "NULL", "undefined", "None"])
    def test_null_like_values_become_none(self, value):
        assert clean_text(value) is None

    @pytest.mark.unit
    def test_text_is_stripped(self):
        assert clean_text("  ORD-1  ") == "ORD-1"

    @pytest.mark.unit
    def test_numeric_ids_become_strings(self):
        assert normalize_signal(payment_id=123456789).payment_id == "123456789"

    @pytest.mark.unit
    @pytest.mark.parametrize("raw,expected", [
        ("approved", GatewayStatus.APPROVED),
        ("APPROVED", GatewayStatus.APPROVED),
        ("in_process", GatewayStatus.PENDING),
        ("authorized", GatewayStatus.PENDING),
        ("canceled", GatewayStatus.CANCELLED),
        ("expired", GatewayStatus.CANCELLED),
        ("charged_back", GatewayStatus.REFUNDED),
        ("declined", GatewayStatus.REJECTED),
        ("something_new", GatewayStatus.UNKNOWN),
    ])
    def test_status_vocabulary(self, raw, expected):
        assert normalize_status(raw) == expected

    @pytest.mark.unit
    def test_error_code_keeps_gateway_casing(self):
        assert normalize_signal(error_code=" CC_REJECTED_Other ").error_code == "CC_REJECTED_Other"

    @pytest.mark.unit
    def test_redirect_keys_map_onto_signal(self):
        signal = signal_from_redirect({
            "payment_id": "111",
            "external_reference": "ORD-1",
            "status": "pending",
            "collection_status": "in_process",
            "error": "Unknown",
        })
        assert signal.payment_id == "111"
        assert signal.external_reference == "ORD-1"
        assert signal.raw_status == GatewayStatus.PENDING
        assert signal.collection_status == GatewayStatus.PENDING
        assert signal.error_code == "Unknown"


class TestClassification:

    @pytest.mark.unit
    def test_null_literal_statuses_with_reference_is_cancelled(self):
        result = resolve(external_reference="TEST-ORDER-123", collection_status="null", status="null")
        assert result.outcome == Outcome.USER_CANCELLED.value
        assert result.rule == "abandoned_with_reference"

    @pytest.mark.unit
    def test_empty_redirect_is_cancelled(self):
        result = resolve()
        assert result.outcome == Outcome.USER_CANCELLED.value
        assert result.is_bare_return

    @pytest.mark.unit
    def test_decline_code_passes_through(self):
        result = resolve(payment_id="123", external_reference="ORD-1", error="cc_rejected_insufficient_amount")
        assert result.outcome == "cc_rejected_insufficient_amount"
        assert result.payment_status == PaymentStatus.FAILED
        assert result.notification_kind == NotificationKind.REJECTED

    @pytest.mark.unit
    @pytest.mark.parametrize("params", [
        {"status": "cancelled"},
        {"status": "cancelled", "payment_id": "1", "external_reference": "ORD-1"},
        {"status": "cancelled", "error": "cc_rejected_high_risk", "external_reference": "ORD-1"},
        {"collection_status": "cancelled", "status": "pending", "payment_id": "1"},
        {"status": "cancelled", "collection_status": "approved", "payment_id": "1"},
        {"status": "cancelled", "collection_status": "approved", "payment_id": "1", "external_reference": "ORD-1"},
    ])
    def test_cancelled_status_always_wins(self, params):
        assert resolve(**params).outcome == Outcome.USER_CANCELLED.value

    @pytest.mark.unit
    @pytest.mark.parametrize("params", [
        {"payment_id": "1", "status": "approved"},
        {"payment_id": "1", "status": "approved", "error": "unknown"},
        {"payment_id": "1", "status": "approved", "collection_status": "cancelled"},
        {"payment_id": "1", "collection_status": "approved", "external_reference": "ORD-1"},
    ])
    def test_payment_id_with_approved_status_is_approved(self, params):
        assert resolve(**params).outcome == Outcome.APPROVED.value

    @pytest.mark.unit
    @pytest.mark.parametrize("error", ["unknown", "return_to_site", "RETURN_TO_SITE"])
    def test_abandonment_error_codes(self, error):
        result = resolve(payment_id="1", external_reference="ORD-1", error=error)
        assert result.outcome == Outcome.USER_CANCELLED.value
        assert result.rule == "abandonment_code"

    @pytest.mark.unit
    def test_error_without_correlation_passes_through(self):
        result = resolve(error="cc_rejected_bad_filled_card_number", status="rejected")
        assert result.outcome == "cc_rejected_bad_filled_card_number"
        assert result.rule == "uncorrelated_error"

    @pytest.mark.unit
    def test_decline_code_is_not_recased(self):
        result = resolve(payment_id="1", external_reference="ORD-1", error="CC_REJECTED_Other")
        assert result.outcome == "CC_REJECTED_Other"
        assert result.payment_status == PaymentStatus.FAILED

    @pytest.mark.unit
    def test_approved_collection_status_does_not_override_cancelled_status(self):
        result = resolve(payment_id="1", status="cancelled", collection_status="approved")
        assert result.outcome == Outcome.USER_CANCELLED.value
        assert result.rule == "explicit_cancel"

    @pytest.mark.unit
    def test_pending_status(self):
        result = resolve(payment_id="1", external_reference="ORD-1", status="in_process")
        assert result.outcome == Outcome.PENDING.value
        assert result.payment_status == PaymentStatus.PENDING

    @pytest.mark.unit
    def test_refunded_status(self):
        result = resolve(payment_id="1", external_reference="ORD-1", status="refunded")
        assert result.outcome == Outcome.REFUNDED.value
        assert result.payment_status == PaymentStatus.REFUNDED

    @pytest.mark.unit
    def test_approved_without_payment_id_still_approved_by_status(self):
        result = resolve(external_reference="ORD-1", status="approved")
        assert result.outcome == Outcome.APPROVED.value
        assert result.rule == "status"

    @pytest.mark.unit
    def test_rejected_without_code_is_payment_failed(self):
        result = resolve(payment_id="1", external_reference="ORD-1", status="rejected")
        assert result.outcome == Outcome.PAYMENT_FAILED.value
        assert not result.ambiguous

    @pytest.mark.unit
    def test_unrecognized_status_is_ambiguous_failure(self):
        result = resolve(payment_id="1", external_reference="ORD-1", status="weird_state")
        assert result.outcome == Outcome.PAYMENT_FAILED.value
        assert result.ambiguous

    @pytest.mark.unit
    def test_reference_with_payment_id_but_no_status_is_ambiguous(self):
        result = resolve(payment_id="1", external_reference="ORD-1")
        assert result.outcome == Outcome.PAYMENT_FAILED.value
        assert result.rule == "fallback"


class TestOutcomeMapping:

    @pytest.mark.unit
    @pytest.mark.parametrize("outcome,status", [
        ("approved", PaymentStatus.PAID),
        ("pending", PaymentStatus.PENDING),
        ("user_cancelled", PaymentStatus.CANCELLED),
        ("refunded", PaymentStatus.REFUNDED),
        ("payment_failed", PaymentStatus.FAILED),
        ("cc_rejected_call_for_authorize", PaymentStatus.FAILED),
    ])
    def test_payment_status(self, outcome, status):
        assert outcome_to_payment_status(outcome) == status

    @pytest.mark.unit
    def test_notification_kinds(self):
        assert outcome_to_notification("approved") == NotificationKind.APPROVED
        assert outcome_to_notification("user_cancelled") == NotificationKind.CANCELLED
        assert outcome_to_notification("cc_rejected_other_reason") == NotificationKind.REJECTED


class TestTransitionGuard:

    @pytest.mark.unit
    @pytest.mark.parametrize("target", ["paid", "failed", "cancelled", "refunded"])
    def test_pending_moves_anywhere(self, target):
        assert can_transition("pending", target)

    @pytest.mark.unit
    @pytest.mark.parametrize("status", ["pending", "paid", "failed", "cancelled", "refunded"])
    def test_same_status_is_not_a_transition(self, status):
        assert not can_transition(status, status)

    @pytest.mark.unit
    @pytest.mark.parametrize("target", ["pending", "failed", "cancelled"])
    def test_paid_is_sticky(self, target):
        assert not can_transition("paid", target)

    @pytest.mark.unit
    def test_paid_can_be_refunded(self):
        assert can_transition("paid", "refunded")

    @pytest.mark.unit
    def test_customer_can_retry_after_cancel_or_failure(self):
        assert can_transition("cancelled", "paid")
        assert can_transition("failed", "paid")
        assert can_transition("cancelled", "pending")

    @pytest.mark.unit
    @pytest.mark.parametrize("target", ["pending", "paid", "failed", "cancelled"])
    def test_refunded_is_terminal(self, target):
        assert not can_transition("refunded", target)
