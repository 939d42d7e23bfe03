"""
Payout service: vendor entitlements, balance disbursements, and their
follow-up.

A disbursement always claims the vendor's *whole* pending balance through
BalanceService.claim_full_balance (compare-and-swap to zero), so the
automatic sweep and a manual withdrawal can never both pay the same money.

Disbursement outcomes:
    gateway accepted           -> PROCESSING (or PAID if the rail is final)
    gateway refused            -> FAILED, claimed balance restored
    gateway timed out          -> PROCESSING with outcome_unknown; the
                                  balance stays claimed until
                                  refresh_processing_payouts() resolves it

Usage:
    from payments.services import PayoutService

    # Celery beat / scheduler trigger
    stats = PayoutService.run_auto_payout_sweep()

    # Vendor "withdraw all"
    result = PayoutService.request_manual_payout(request.user)
    if not result.success:
        return Response(result.to_response(), status=400)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import DatabaseError, transaction
from django.db.models import F
from django.utils import timezone

from core.money import ZERO
from core.services import BaseService, ServiceResult
from payments.exceptions import (
    GatewayConfigurationError,
    GatewayError,
    GatewayTimeoutError,
    PayoutRejectedError,
    StaleRecordError,
)
from payments.fees import FeePolicy, PayoutQuote, auto_payout_policy, manual_payout_policy
from payments.gateways import COMPLETED, FAILED, get_gateway
from payments.models import Payout, PayoutAccount, VendorBalance
from payments.services.balance_service import BalanceService
from payments.state_machines import FeeBearer, Gateway, PayoutMethod, PayoutState, PayoutTrigger

if TYPE_CHECKING:
    from authentication.models import User
    from orders.models import Order


@dataclass
class SettlementResult:
    """
    Outcome of resolving a disbursement.

    Attributes:
        payout: The disbursement Payout
        settled: Number of order-release entitlements marked paid
    """

    payout: Payout
    settled: int = 0


class PayoutService(BaseService):
    """Creates entitlements, disburses vendor balances, and settles them."""

    # =========================================================================
    # Entitlements
    # =========================================================================

    @classmethod
    def record_entitlement(cls, order: Order, amount) -> Payout:
        """
        Record what the vendor is owed for a completed order.

        Entitlements move no money; the next disbursement of the vendor's
        balance settles them. One per order.
        """
        payout, created = Payout.objects.get_or_create(
            order=order,
            trigger=PayoutTrigger.ORDER_RELEASE,
            defaults={
                "vendor_id": order.vendor_id,
                "amount": amount,
                "fee_paid_by": FeeBearer.PLATFORM,
                "status": PayoutState.PENDING,
            },
        )
        if created:
            cls.get_logger().info(
                "Payout entitlement recorded",
                extra={
                    "order_id": str(order.pk),
                    "vendor_id": str(order.vendor_id),
                    "payout_id": str(payout.pk),
                    "amount": str(amount),
                },
            )
        return payout

    # =========================================================================
    # Disbursement Entry Points
    # =========================================================================

    @classmethod
    def run_auto_payout_sweep(cls) -> dict:
        """
        Disburse every vendor balance at or above AUTO_PAYOUT_THRESHOLD.

        The platform absorbs the transfer fee. Vendors are independent:
        a failure is counted and the sweep moves on.
        """
        policy = auto_payout_policy()
        stats = {
            "eligible": 0,
            "paid": 0,
            "processing": 0,
            "failed": 0,
            "skipped": 0,
            "errors": 0,
            "total_disbursed": "0.00",
        }
        total = ZERO

        vendor_ids = list(
            VendorBalance.objects.filter(pending_balance__gte=policy.threshold).values_list("vendor_id", flat=True)
        )
        vendors = get_user_model().objects.filter(pk__in=vendor_ids).order_by("pk")

        for vendor in vendors:
            stats["eligible"] += 1
            try:
                payout = cls._payout_vendor(vendor, policy, PayoutTrigger.AUTOMATIC)
            except (PayoutRejectedError, StaleRecordError) as e:
                stats["skipped"] += 1
                cls.get_logger().info(
                    "Vendor skipped by payout sweep",
                    extra={"vendor_id": str(vendor.pk), "reason": e.error_code},
                )
                continue
            except Exception:
                stats["errors"] += 1
                cls.get_logger().exception(
                    "Payout sweep failed for vendor",
                    extra={"vendor_id": str(vendor.pk)},
                )
                continue

            if payout.status == PayoutState.FAILED:
                stats["failed"] += 1
                continue
            stats["paid" if payout.status == PayoutState.PAID else "processing"] += 1
            total += payout.amount

        stats["total_disbursed"] = str(total)
        cls.get_logger().info("Auto payout sweep finished", extra=stats)
        return stats

    @classmethod
    def request_manual_payout(cls, vendor: User) -> ServiceResult[Payout]:
        """
        Withdraw the vendor's whole balance now.

        The vendor bears the manual fee, so a balance of 600 with a flat
        fee of 100 sends 500.

        Returns:
            ServiceResult with the disbursement Payout, or a failure with
            NO_PAYOUT_ACCOUNT, BELOW_THRESHOLD, FEE_EXCEEDS_BALANCE,
            NOTHING_TO_PAY, STALE_RECORD, or PAYOUT_FAILED
        """
        try:
            payout = cls._payout_vendor(vendor, manual_payout_policy(), PayoutTrigger.MANUAL)
        except (PayoutRejectedError, StaleRecordError) as e:
            cls.get_logger().info(
                "Manual payout rejected",
                extra={"vendor_id": str(vendor.pk), "reason": e.error_code},
            )
            return ServiceResult.from_exception(e)

        if payout.status == PayoutState.FAILED:
            return ServiceResult.failure(
                payout.failure_reason or "The payout could not be sent. Your balance has been restored.",
                error_code="PAYOUT_FAILED",
            )
        return ServiceResult.success(payout)

    # =========================================================================
    # Claim and Disburse
    # =========================================================================

    @classmethod
    def resolve_account(cls, vendor: User) -> PayoutAccount | None:
        account = PayoutAccount.objects.filter(vendor=vendor, is_active=True).first()
        if account is None or not account.destination:
            return None
        return account

    @staticmethod
    def gateway_for(account: PayoutAccount) -> str:
        if account.method == PayoutMethod.STRIPE:
            return Gateway.STRIPE
        return settings.PAYOUT_GATEWAY

    @staticmethod
    def check_policy(balance: Decimal, policy: FeePolicy) -> PayoutQuote:
        """
        Quote a payout of balance, or explain why it cannot happen.

        Raises:
            PayoutRejectedError: NOTHING_TO_PAY, BELOW_THRESHOLD, or
                FEE_EXCEEDS_BALANCE
        """
        if balance <= ZERO:
            raise PayoutRejectedError("You have no balance to withdraw.", error_code="NOTHING_TO_PAY")
        if balance < policy.threshold:
            raise PayoutRejectedError(
                f"The minimum payout is KES {policy.threshold}. Your balance is KES {balance}.",
                error_code="BELOW_THRESHOLD",
                details={"balance": str(balance), "threshold": str(policy.threshold)},
            )
        quote = policy.quote(balance)
        if quote.fee_paid_by == FeeBearer.VENDOR and quote.fee >= balance:
            raise PayoutRejectedError(
                f"The transfer fee of KES {quote.fee} would use up your whole balance of KES {balance}.",
                error_code="FEE_EXCEEDS_BALANCE",
                details={"balance": str(balance), "fee": str(quote.fee)},
            )
        return quote

    @classmethod
    def _payout_vendor(cls, vendor: User, policy: FeePolicy, trigger: str) -> Payout:
        account = cls.resolve_account(vendor)
        if account is None:
            raise PayoutRejectedError(
                "Add a payout account before requesting a payout.",
                error_code="NO_PAYOUT_ACCOUNT",
            )

        # Human-readable rejection before touching the balance
        cls.check_policy(BalanceService.get_or_create(vendor).pending_balance, policy)

        claimed_at = timezone.now()
        claimed = BalanceService.claim_full_balance(vendor, minimum=policy.threshold)
        if claimed <= ZERO:
            raise PayoutRejectedError(
                "Your balance changed before the payout started. Please try again.",
                error_code="BELOW_THRESHOLD",
            )

        try:
            quote = cls.check_policy(claimed, policy)
        except PayoutRejectedError:
            BalanceService.restore(vendor, claimed)
            raise

        return cls._disburse(vendor, account, quote, trigger, claimed_at)

    @classmethod
    def _disburse(
        cls,
        vendor: User,
        account: PayoutAccount,
        quote: PayoutQuote,
        trigger: str,
        claimed_at: datetime,
    ) -> Payout:
        gateway_name = cls.gateway_for(account)
        log_context = {
            "vendor_id": str(vendor.pk),
            "gateway": gateway_name,
            "trigger": trigger,
            "amount": str(quote.amount),
            "fee": str(quote.fee),
        }

        try:
            with transaction.atomic():
                payout = Payout.objects.create(
                    vendor=vendor,
                    amount=quote.amount,
                    transfer_fee=quote.fee,
                    fee_paid_by=quote.fee_paid_by,
                    balance_before=quote.balance,
                    trigger=trigger,
                    method=account.method,
                    gateway=gateway_name,
                    destination_account=account.destination,
                    metadata={"claimed_at": claimed_at.isoformat()},
                )
        except DatabaseError:
            BalanceService.restore(vendor, quote.balance)
            raise

        log_context["payout_id"] = str(payout.pk)
        cls.get_logger().info("Disbursing vendor balance", extra=log_context)

        try:
            result = get_gateway(gateway_name).disburse(
                account.destination,
                quote.amount,
                f"Vendor payout {str(payout.pk)[:8]}",
                reference=str(payout.pk),
                account_name=account.account_name or vendor.display_name,
            )
        except GatewayTimeoutError as e:
            payout.process()
            payout.metadata = {**payout.metadata, "outcome_unknown": True, "error": e.message}
            payout.save()
            cls.get_logger().warning("Disbursement outcome unknown", extra=log_context)
            return payout
        except (GatewayError, GatewayConfigurationError) as e:
            cls._fail_and_restore(payout, e.message, getattr(e, "raw_response", None))
            cls.get_logger().warning(
                "Disbursement refused, balance restored",
                extra={**log_context, "error_code": e.error_code},
            )
            return payout

        payout.process(tracking_reference=result.tracking_id)
        payout.metadata = {**payout.metadata, "disburse_response": result.raw_response}
        payout.save()

        if result.status == COMPLETED:
            cls.settle(payout.pk)
        elif result.status == FAILED:
            cls._resolve_failed(payout.pk, "Gateway reported the disbursement failed", result.raw_response)

        return Payout.objects.get(pk=payout.pk)

    # =========================================================================
    # Resolution
    # =========================================================================

    @classmethod
    def settle(cls, payout_id) -> SettlementResult | None:
        """
        Mark a disbursement paid and settle the entitlements it covered.

        Entitlements created up to the moment the balance was claimed are
        the ones whose credits that claim included.
        """
        with transaction.atomic():
            payout = Payout.objects.select_for_update().filter(pk=payout_id).first()
            if payout is None or payout.status not in (PayoutState.PENDING, PayoutState.PROCESSING):
                return None

            payout.complete()
            payout.metadata = {k: v for k, v in payout.metadata.items() if k != "outcome_unknown"}
            payout.save()

            cutoff = cls._claimed_at(payout)
            now = timezone.now()
            settled = Payout.objects.filter(
                vendor_id=payout.vendor_id,
                trigger=PayoutTrigger.ORDER_RELEASE,
                status=PayoutState.PENDING,
                created_at__lte=cutoff,
            ).update(
                status=PayoutState.PAID,
                settled_by=payout,
                paid_at=now,
                updated_at=now,
                version=F("version") + 1,
            )

        cls.get_logger().info(
            "Disbursement paid",
            extra={"payout_id": str(payout.pk), "vendor_id": str(payout.vendor_id), "settled": settled},
        )
        return SettlementResult(payout=payout, settled=settled)

    @staticmethod
    def _claimed_at(payout: Payout) -> datetime:
        value = payout.metadata.get("claimed_at")
        if value:
            return datetime.fromisoformat(value)
        return payout.created_at

    @classmethod
    def _fail_and_restore(cls, payout: Payout, reason: str, raw_response=None) -> None:
        with transaction.atomic():
            payout.fail(reason=reason)
            payout.metadata = {**payout.metadata, "error_response": raw_response}
            payout.save()
            BalanceService.restore(payout.vendor, payout.balance_before)

    @classmethod
    def _resolve_failed(cls, payout_id, reason: str, raw_response=None) -> bool:
        """Fail a processing payout exactly once and give the balance back."""
        with transaction.atomic():
            payout = Payout.objects.select_for_update().filter(pk=payout_id).first()
            if payout is None or payout.status not in (PayoutState.PENDING, PayoutState.PROCESSING):
                return False
            cls._fail_and_restore(payout, reason, raw_response)

        cls.get_logger().warning(
            "Disbursement failed, balance restored",
            extra={"payout_id": str(payout_id), "vendor_id": str(payout.vendor_id), "reason": reason},
        )
        return True

    @classmethod
    def refresh_processing_payouts(cls) -> dict:
        """
        Ask the gateway about every PROCESSING disbursement.

        Resolves timed-out (outcome unknown) and asynchronous rails.
        """
        stats = {"checked": 0, "paid": 0, "failed": 0, "pending": 0, "errors": 0}
        payouts = Payout.objects.filter(status=PayoutState.PROCESSING).exclude(
            trigger=PayoutTrigger.ORDER_RELEASE
        )

        for payout in payouts.order_by("created_at"):
            stats["checked"] += 1
            if not payout.tracking_reference:
                # Timed out before the gateway returned an id; needs manual lookup
                stats["pending"] += 1
                cls.get_logger().warning(
                    "Processing payout has no tracking reference",
                    extra={"payout_id": str(payout.pk), "gateway": payout.gateway},
                )
                continue

            try:
                result = get_gateway(payout.gateway).disbursement_status(payout.tracking_reference)
            except (GatewayError, GatewayConfigurationError) as e:
                stats["errors"] += 1
                cls.get_logger().warning(
                    "Disbursement status check failed",
                    extra={"payout_id": str(payout.pk), "gateway": payout.gateway, "error": str(e)},
                )
                continue
            except Exception:
                stats["errors"] += 1
                cls.get_logger().exception(
                    "Disbursement status refresh crashed",
                    extra={"payout_id": str(payout.pk)},
                )
                continue

            if result.status == COMPLETED:
                cls.settle(payout.pk)
                stats["paid"] += 1
            elif result.status == FAILED:
                cls._resolve_failed(payout.pk, "Gateway reported the disbursement failed", result.raw_response)
                stats["failed"] += 1
            else:
                stats["pending"] += 1

        cls.get_logger().info("Processing payout refresh finished", extra=stats)
        return stats

    @classmethod
    def handle_mpesa_b2c_result(cls, conversation_id: str, result_code, raw: dict) -> bool:
        """
        Apply an M-Pesa B2C result callback.

        Returns False when no processing payout matches the conversation id.
        """
        payout = Payout.objects.filter(
            gateway=Gateway.MPESA,
            tracking_reference=conversation_id,
        ).first()
        if payout is None:
            cls.get_logger().info(
                "No payout for B2C result",
                extra={"gateway": Gateway.MPESA, "reference": conversation_id},
            )
            return False

        if str(result_code) == "0":
            return cls.settle(payout.pk) is not None
        reason = raw.get("ResultDesc") or f"M-Pesa B2C result {result_code}"
        return cls._resolve_failed(payout.pk, reason, raw)
