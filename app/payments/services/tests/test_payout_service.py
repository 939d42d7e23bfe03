"""
Tests for PayoutService.

Tests cover:
- Order-release entitlements
- Automatic sweep: threshold, platform-paid fee bands, per-vendor isolation
- Manual withdrawal: vendor-paid fee and rejection codes
- Disbursement outcomes: accepted, completed, refused, timed out
- Settlement of entitlements against a disbursement
- Processing refresh and M-Pesa B2C results
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from django.test import override_settings
from django.utils import timezone

from payments.exceptions import GatewayConfigurationError, GatewayError, GatewayTimeoutError, PayoutRejectedError
from payments.fees import auto_payout_policy, manual_payout_policy
from payments.gateways import COMPLETED, FAILED, DisburseResult
from payments.models import Payout, VendorBalance
from payments.services import PayoutService
from payments.state_machines import FeeBearer, Gateway, PayoutMethod, PayoutState, PayoutTrigger
from payments.tests.factories import PayoutAccountFactory, PayoutFactory, VendorBalanceFactory


def get_balance(vendor) -> VendorBalance:
    return VendorBalance.objects.get(vendor=vendor)


def disbursements(vendor):
    return Payout.objects.filter(vendor=vendor).exclude(trigger=PayoutTrigger.ORDER_RELEASE)


@pytest.fixture
def funded_vendor(vendor, payout_account):
    VendorBalanceFactory(vendor=vendor, pending_balance=Decimal("1600.00"))
    return vendor


@pytest.fixture
def processing_payout(vendor):
    """IntaSend disbursement accepted by the gateway, balance already claimed."""
    VendorBalanceFactory(vendor=vendor, pending_balance=Decimal("0.00"), total_paid_out=Decimal("1600.00"))
    return PayoutFactory(
        vendor=vendor,
        order=None,
        trigger=PayoutTrigger.AUTOMATIC,
        status=PayoutState.PROCESSING,
        amount=Decimal("1600.00"),
        transfer_fee=Decimal("100.00"),
        balance_before=Decimal("1600.00"),
        gateway=Gateway.INTASEND,
        tracking_reference="TRK-0001",
        metadata={"claimed_at": timezone.now().isoformat()},
    )


# =============================================================================
# Entitlements
# =============================================================================


@pytest.mark.django_db
class TestRecordEntitlement:
    def test_records_pending_entitlement(self, paid_order):
        """Should record a PENDING order-release payout for the vendor."""
        payout = PayoutService.record_entitlement(paid_order, Decimal("4860.00"))

        assert payout.trigger == PayoutTrigger.ORDER_RELEASE
        assert payout.status == PayoutState.PENDING
        assert payout.vendor_id == paid_order.vendor_id
        assert payout.amount == Decimal("4860.00")

    def test_second_call_returns_same_entitlement(self, paid_order):
        """Should keep one entitlement per order."""
        first = PayoutService.record_entitlement(paid_order, Decimal("4860.00"))
        second = PayoutService.record_entitlement(paid_order, Decimal("4860.00"))

        assert first.pk == second.pk
        assert Payout.objects.filter(order=paid_order).count() == 1


# =============================================================================
# Policy
# =============================================================================


class TestCheckPolicy:
    def test_auto_quote_keeps_whole_balance(self):
        """Should send the full balance when the platform pays the fee."""
        quote = PayoutService.check_policy(Decimal("1600.00"), auto_payout_policy())

        assert quote.amount == Decimal("1600.00")
        assert quote.fee == Decimal("100.00")
        assert quote.fee_paid_by == FeeBearer.PLATFORM

    def test_manual_quote_deducts_fee(self):
        """Should deduct the flat fee when the vendor pays it."""
        quote = PayoutService.check_policy(Decimal("600.00"), manual_payout_policy())

        assert quote.amount == Decimal("500.00")
        assert quote.fee == Decimal("100.00")

    @pytest.mark.parametrize(
        "balance,code",
        [
            ("0.00", "NOTHING_TO_PAY"),
            ("499.99", "BELOW_THRESHOLD"),
        ],
    )
    def test_rejections(self, balance, code):
        """Should explain why a balance cannot be paid out."""
        with pytest.raises(PayoutRejectedError) as exc_info:
            PayoutService.check_policy(Decimal(balance), manual_payout_policy())

        assert exc_info.value.error_code == code

    @override_settings(MANUAL_PAYOUT_THRESHOLD="50")
    def test_fee_equal_to_balance_is_rejected(self):
        """Should refuse a payout the fee would consume entirely."""
        with pytest.raises(PayoutRejectedError) as exc_info:
            PayoutService.check_policy(Decimal("100.00"), manual_payout_policy())

        assert exc_info.value.error_code == "FEE_EXCEEDS_BALANCE"


@pytest.mark.django_db
class TestGatewayFor:
    def test_mpesa_account_uses_configured_rail(self, payout_account):
        """Should disburse mobile-money accounts through PAYOUT_GATEWAY."""
        assert PayoutService.gateway_for(payout_account) == "intasend"

    def test_stripe_account_uses_stripe(self, vendor):
        """Should send Stripe connected accounts through Stripe."""
        account = PayoutAccountFactory(
            vendor=vendor,
            method=PayoutMethod.STRIPE,
            stripe_account_id="acct_1Nv0FGQ9RKHgCVdK",
        )

        assert PayoutService.gateway_for(account) == Gateway.STRIPE


# =============================================================================
# Automatic Sweep
# =============================================================================


@pytest.mark.django_db
class TestAutoPayoutSweep:
    def test_disburses_balance_above_threshold(self, gateways, funded_vendor):
        """Should send the whole balance with the platform absorbing the fee."""
        stats = PayoutService.run_auto_payout_sweep()

        assert stats["eligible"] == 1
        assert stats["processing"] == 1
        assert stats["total_disbursed"] == "1600.00"

        call = gateways["intasend"].disburse_calls[0]
        assert call["destination"] == "0722000111"
        assert call["amount"] == Decimal("1600.00")

        payout = disbursements(funded_vendor).get()
        assert payout.status == PayoutState.PROCESSING
        assert payout.trigger == PayoutTrigger.AUTOMATIC
        assert payout.transfer_fee == Decimal("100.00")
        assert payout.fee_paid_by == FeeBearer.PLATFORM
        assert payout.tracking_reference == "TRK-0001"

        balance = get_balance(funded_vendor)
        assert balance.pending_balance == Decimal("0.00")
        assert balance.total_paid_out == Decimal("1600.00")

    def test_balance_below_threshold_is_not_eligible(self, gateways, vendor, payout_account):
        """Should leave balances under AUTO_PAYOUT_THRESHOLD alone."""
        VendorBalanceFactory(vendor=vendor, pending_balance=Decimal("1499.99"))

        stats = PayoutService.run_auto_payout_sweep()

        assert stats["eligible"] == 0
        assert gateways["intasend"].disburse_calls == []
        assert get_balance(vendor).pending_balance == Decimal("1499.99")

    def test_vendor_without_account_is_skipped(self, gateways, vendor):
        """Should skip a vendor with no payout destination."""
        VendorBalanceFactory(vendor=vendor, pending_balance=Decimal("2000.00"))

        stats = PayoutService.run_auto_payout_sweep()

        assert stats["eligible"] == 1
        assert stats["skipped"] == 1
        assert get_balance(vendor).pending_balance == Decimal("2000.00")

    def test_completed_disbursement_settles_entitlements(self, gateways, funded_vendor, paid_order):
        """Should mark the covered entitlements paid by the disbursement."""
        entitlement = PayoutFactory(vendor=funded_vendor, order=paid_order)
        gateways["intasend"].disburse_result = DisburseResult(tracking_id="TRK-0001", status=COMPLETED)

        stats = PayoutService.run_auto_payout_sweep()

        assert stats["paid"] == 1
        payout = disbursements(funded_vendor).get()
        assert payout.status == PayoutState.PAID
        assert payout.paid_at is not None

        entitlement = Payout.objects.get(pk=entitlement.pk)
        assert entitlement.status == PayoutState.PAID
        assert entitlement.settled_by_id == payout.pk

    def test_timeout_keeps_balance_claimed(self, gateways, funded_vendor):
        """Should park a timed-out disbursement as PROCESSING with unknown outcome."""
        gateways["intasend"].disburse_error = GatewayTimeoutError("Read timed out", gateway="intasend")

        stats = PayoutService.run_auto_payout_sweep()

        assert stats["processing"] == 1
        payout = disbursements(funded_vendor).get()
        assert payout.status == PayoutState.PROCESSING
        assert payout.outcome_unknown is True
        assert payout.tracking_reference == ""
        assert get_balance(funded_vendor).pending_balance == Decimal("0.00")

    def test_refusal_restores_balance(self, gateways, funded_vendor):
        """Should fail the payout and give the claimed balance back."""
        gateways["intasend"].disburse_error = GatewayError(
            "Insufficient float",
            gateway="intasend",
            raw_response={"detail": "Insufficient float"},
        )

        stats = PayoutService.run_auto_payout_sweep()

        assert stats["failed"] == 1
        assert stats["total_disbursed"] == "0.00"
        payout = disbursements(funded_vendor).get()
        assert payout.status == PayoutState.FAILED
        assert payout.failure_reason == "Insufficient float"

        balance = get_balance(funded_vendor)
        assert balance.pending_balance == Decimal("1600.00")
        assert balance.total_paid_out == Decimal("0.00")

    def test_unconfigured_gateway_restores_balance(self, gateways, funded_vendor):
        """Should treat missing credentials as a refusal."""
        gateways["intasend"].disburse_error = GatewayConfigurationError("INTASEND_SECRET_KEY is not set")

        stats = PayoutService.run_auto_payout_sweep()

        assert stats["failed"] == 1
        assert get_balance(funded_vendor).pending_balance == Decimal("1600.00")

    def test_crash_for_one_vendor_does_not_stop_sweep(self, mocker, gateways, funded_vendor):
        """Should count an unexpected error and carry on."""
        mocker.patch.object(PayoutService, "_disburse", side_effect=RuntimeError("boom"))

        stats = PayoutService.run_auto_payout_sweep()

        assert stats["errors"] == 1
        assert stats["eligible"] == 1


# =============================================================================
# Manual Withdrawal
# =============================================================================


@pytest.mark.django_db
class TestManualPayout:
    def test_vendor_pays_flat_fee(self, gateways, vendor, payout_account):
        """Should send the balance minus the vendor-paid fee."""
        VendorBalanceFactory(vendor=vendor, pending_balance=Decimal("600.00"))

        result = PayoutService.request_manual_payout(vendor)

        assert result.success
        payout = result.data
        assert payout.trigger == PayoutTrigger.MANUAL
        assert payout.amount == Decimal("500.00")
        assert payout.transfer_fee == Decimal("100.00")
        assert payout.fee_paid_by == FeeBearer.VENDOR
        assert payout.balance_claimed == Decimal("600.00")
        assert gateways["intasend"].disburse_calls[0]["amount"] == Decimal("500.00")
        assert get_balance(vendor).pending_balance == Decimal("0.00")

    def test_no_payout_account(self, gateways, vendor):
        """Should fail with NO_PAYOUT_ACCOUNT."""
        VendorBalanceFactory(vendor=vendor, pending_balance=Decimal("600.00"))

        result = PayoutService.request_manual_payout(vendor)

        assert not result.success
        assert result.error_code == "NO_PAYOUT_ACCOUNT"

    def test_inactive_account_counts_as_missing(self, gateways, vendor):
        """Should ignore deactivated payout accounts."""
        PayoutAccountFactory(vendor=vendor, is_active=False)
        VendorBalanceFactory(vendor=vendor, pending_balance=Decimal("600.00"))

        result = PayoutService.request_manual_payout(vendor)

        assert result.error_code == "NO_PAYOUT_ACCOUNT"

    def test_below_threshold(self, gateways, vendor, payout_account):
        """Should fail with BELOW_THRESHOLD and leave the balance alone."""
        VendorBalanceFactory(vendor=vendor, pending_balance=Decimal("400.00"))

        result = PayoutService.request_manual_payout(vendor)

        assert result.error_code == "BELOW_THRESHOLD"
        assert get_balance(vendor).pending_balance == Decimal("400.00")
        assert gateways["intasend"].disburse_calls == []

    def test_empty_balance(self, gateways, vendor, payout_account):
        """Should fail with NOTHING_TO_PAY for a vendor who never earned."""
        result = PayoutService.request_manual_payout(vendor)

        assert result.error_code == "NOTHING_TO_PAY"

    @override_settings(MANUAL_PAYOUT_THRESHOLD="50")
    def test_fee_exceeds_balance(self, gateways, vendor, payout_account):
        """Should fail with FEE_EXCEEDS_BALANCE and keep the balance."""
        VendorBalanceFactory(vendor=vendor, pending_balance=Decimal("80.00"))

        result = PayoutService.request_manual_payout(vendor)

        assert result.error_code == "FEE_EXCEEDS_BALANCE"
        assert get_balance(vendor).pending_balance == Decimal("80.00")

    def test_refused_disbursement(self, gateways, vendor, payout_account):
        """Should fail with PAYOUT_FAILED and restore the balance."""
        VendorBalanceFactory(vendor=vendor, pending_balance=Decimal("600.00"))
        gateways["intasend"].disburse_error = GatewayError("Invalid phone number", gateway="intasend")

        result = PayoutService.request_manual_payout(vendor)

        assert result.error_code == "PAYOUT_FAILED"
        assert get_balance(vendor).pending_balance == Decimal("600.00")

    def test_stripe_account_disburses_via_stripe(self, gateways, vendor):
        """Should route a Stripe connected account to the Stripe rail."""
        PayoutAccountFactory(
            vendor=vendor,
            method=PayoutMethod.STRIPE,
            stripe_account_id="acct_1Nv0FGQ9RKHgCVdK",
        )
        VendorBalanceFactory(vendor=vendor, pending_balance=Decimal("600.00"))

        result = PayoutService.request_manual_payout(vendor)

        assert result.success
        assert result.data.gateway == Gateway.STRIPE
        assert gateways["stripe"].disburse_calls[0]["destination"] == "acct_1Nv0FGQ9RKHgCVdK"
        assert gateways["intasend"].disburse_calls == []


# =============================================================================
# Settlement and Refresh
# =============================================================================


@pytest.mark.django_db
class TestSettle:
    def test_settles_entitlements_claimed_before_cutoff(self, processing_payout, vendor, paid_order):
        """Should settle only entitlements the claim could have included."""
        covered = PayoutFactory(vendor=vendor, order=paid_order)
        later = PayoutFactory(vendor=vendor)
        Payout.objects.filter(pk=later.pk).update(created_at=timezone.now() + timedelta(minutes=5))

        result = PayoutService.settle(processing_payout.pk)

        assert result.settled == 1
        assert result.payout.status == PayoutState.PAID
        assert Payout.objects.get(pk=covered.pk).settled_by_id == processing_payout.pk
        assert Payout.objects.get(pk=later.pk).status == PayoutState.PENDING

    def test_clears_outcome_unknown(self, processing_payout):
        """Should drop the outcome_unknown flag once the payout is paid."""
        Payout.objects.filter(pk=processing_payout.pk).update(
            metadata={**processing_payout.metadata, "outcome_unknown": True}
        )

        result = PayoutService.settle(processing_payout.pk)

        assert result.payout.outcome_unknown is False

    def test_already_paid_returns_none(self, processing_payout):
        """Should settle a disbursement only once."""
        PayoutService.settle(processing_payout.pk)

        assert PayoutService.settle(processing_payout.pk) is None

    def test_unknown_payout_returns_none(self, db):
        """Should return None for an unknown id."""
        assert PayoutService.settle("00000000-0000-0000-0000-000000000000") is None


@pytest.mark.django_db
class TestRefreshProcessingPayouts:
    def test_completed_disbursement_is_settled(self, gateways, processing_payout):
        """Should mark a confirmed disbursement paid."""
        gateways["intasend"].disbursement_result = DisburseResult(tracking_id="TRK-0001", status=COMPLETED)

        stats = PayoutService.refresh_processing_payouts()

        assert stats == {"checked": 1, "paid": 1, "failed": 0, "pending": 0, "errors": 0}
        assert Payout.objects.get(pk=processing_payout.pk).status == PayoutState.PAID

    def test_failed_disbursement_restores_balance(self, gateways, processing_payout, vendor):
        """Should fail the payout and restore the claimed balance."""
        gateways["intasend"].disbursement_result = DisburseResult(
            tracking_id="TRK-0001",
            status=FAILED,
            raw_response={"status": "FAILED"},
        )

        stats = PayoutService.refresh_processing_payouts()

        assert stats["failed"] == 1
        assert Payout.objects.get(pk=processing_payout.pk).status == PayoutState.FAILED
        balance = get_balance(vendor)
        assert balance.pending_balance == Decimal("1600.00")
        assert balance.total_paid_out == Decimal("0.00")

    def test_still_pending(self, gateways, processing_payout):
        """Should leave an in-flight disbursement PROCESSING."""
        stats = PayoutService.refresh_processing_payouts()

        assert stats["pending"] == 1
        assert Payout.objects.get(pk=processing_payout.pk).status == PayoutState.PROCESSING

    def test_missing_tracking_reference_needs_manual_lookup(self, gateways, processing_payout):
        """Should not guess the outcome of a payout that never got an id."""
        Payout.objects.filter(pk=processing_payout.pk).update(tracking_reference="")

        stats = PayoutService.refresh_processing_payouts()

        assert stats["pending"] == 1
        assert Payout.objects.get(pk=processing_payout.pk).status == PayoutState.PROCESSING

    def test_gateway_error_is_counted(self, mocker, gateways, processing_payout):
        """Should count a failed status lookup and keep going."""
        mocker.patch.object(
            gateways["intasend"],
            "disbursement_status",
            side_effect=GatewayError("Service unavailable", gateway="intasend", status_code=503),
        )

        stats = PayoutService.refresh_processing_payouts()

        assert stats["errors"] == 1
        assert Payout.objects.get(pk=processing_payout.pk).status == PayoutState.PROCESSING


@pytest.mark.django_db
class TestMpesaB2CResult:
    @pytest.fixture
    def b2c_payout(self, processing_payout):
        Payout.objects.filter(pk=processing_payout.pk).update(
            gateway=Gateway.MPESA,
            tracking_reference="AG_20191219_00005797af5d7d75f652",
        )
        return processing_payout

    def test_success_settles(self, b2c_payout):
        """Should settle on ResultCode 0."""
        handled = PayoutService.handle_mpesa_b2c_result("AG_20191219_00005797af5d7d75f652", 0, {})

        assert handled is True
        assert Payout.objects.get(pk=b2c_payout.pk).status == PayoutState.PAID

    def test_failure_restores_balance(self, b2c_payout, vendor):
        """Should fail with the M-Pesa description and restore the balance."""
        raw = {"ResultCode": 2001, "ResultDesc": "The initiator information is invalid."}

        handled = PayoutService.handle_mpesa_b2c_result("AG_20191219_00005797af5d7d75f652", 2001, raw)

        assert handled is True
        payout = Payout.objects.get(pk=b2c_payout.pk)
        assert payout.status == PayoutState.FAILED
        assert payout.failure_reason == "The initiator information is invalid."
        assert get_balance(vendor).pending_balance == Decimal("1600.00")

    def test_unknown_conversation(self, db):
        """Should report that no payout matched."""
        assert PayoutService.handle_mpesa_b2c_result("AG_unknown", 0, {}) is False

    def test_repeated_result_is_ignored(self, b2c_payout):
        """Should not settle twice when M-Pesa repeats the callback."""
        PayoutService.handle_mpesa_b2c_result("AG_20191219_00005797af5d7d75f652", 0, {})

        assert PayoutService.handle_mpesa_b2c_result("AG_20191219_00005797af5d7d75f652", 0, {}) is False
