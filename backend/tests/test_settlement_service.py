# Overview: Pytest coverage for orders, settlement math and the commission lifecycle.

"""
Settlement Engine Tests

Covers:
1. Pure breakdown arithmetic (supplier transfer, commission, split payment)
2. Order creation and forward-only status moves
3. Write-once settlement mode selection
4. Commission lifecycle ordering and idempotency
"""

import pytest

from authnet.errors import (
    AccessDeniedError,
    InvalidTransitionError,
    NotActiveError,
    OutOfScopeError,
    PrematureCommissionError,
    SettlementAlreadySetError,
    ValidationError,
)
from authnet.models import Order
from authnet.services import authorization_service, settlement_service
from authnet.services.concurrency import compare_and_set
from authnet.services.settlement_service import compute_breakdown, normalize_order_status, percent_of

from conftest import MANUFACTURER

DESIGNER = "designer-dana"


@pytest.fixture
def grant(db_session, catalog, make_grant):
    """All-scope grant at list price, 60% minimum discount rate, 40% commission."""
    return make_grant(MANUFACTURER, DESIGNER, discount_rate=60, commission_rate=40)


@pytest.fixture
def order(grant, catalog):
    """One lamp at 10000 cents."""
    return settlement_service.create_order(grant.id, DESIGNER, [{"productId": catalog["lamp"].id}])


class TestBreakdown:

    def test_supplier_transfer(self):
        result = compute_breakdown(
            mode="supplier_transfer", original_price_cents=10000,
            min_discount_rate_bps=6000, commission_rate_bps=4000,
        )
        assert result.min_discount_price_cents == 6000
        assert result.supplier_price_cents == 3600
        assert result.commission_amount_cents is None

    def test_commission_with_ratio(self):
        result = compute_breakdown(
            mode="commission_mode", original_price_cents=10000,
            min_discount_rate_bps=6000, commission_rate_bps=4000, payment_ratio_bps=5000,
        )
        assert result.min_discount_price_cents == 6000
        assert result.first_payment_amount_cents == 3000
        assert result.remaining_payment_amount_cents == 3000
        assert result.commission_amount_cents == 2400
        assert result.payment_ratio_enabled

    def test_commission_without_ratio_pays_in_full(self):
        result = compute_breakdown(
            mode="commission_mode", original_price_cents=10000,
            min_discount_rate_bps=6000, commission_rate_bps=4000,
        )
        assert result.first_payment_amount_cents == 6000
        assert result.remaining_payment_amount_cents == 0

    def test_markup_joins_principal(self):
        result = compute_breakdown(
            mode="supplier_transfer", original_price_cents=10000, invoice_markup_cents=600,
            min_discount_rate_bps=6000, commission_rate_bps=4000,
        )
        assert result.principal_cents == 10600
        assert result.min_discount_price_cents == 6360
        assert result.supplier_price_cents == 3816

    def test_rounding(self):
        assert percent_of(333, 5000) == 167   # 166.5
        assert percent_of(1001, 3333) == 334  # 333.6333

    def test_unknown_mode(self):
        with pytest.raises(ValidationError):
            compute_breakdown(mode="barter", original_price_cents=1, min_discount_rate_bps=0, commission_rate_bps=0)


class TestOrderStatus:

    def test_normalize(self):
        assert normalize_order_status("paid") == "paid"
        assert normalize_order_status(2) == "paid"
        assert normalize_order_status("5") == "completed"
        assert normalize_order_status(6) == "cancelled"

    @pytest.mark.parametrize("value", [0, 7, True, "Paid", "done", None, 2.0])
    def test_unknown_status_rejected(self, value):
        with pytest.raises(ValidationError):
            normalize_order_status(value)

    def test_forward_only(self, order):
        settlement_service.update_order_status(order.id, DESIGNER, "paid")
        completed = settlement_service.update_order_status(order.id, MANUFACTURER, 5)

        assert completed.status == "completed"
        assert completed.completed_at is not None
        with pytest.raises(InvalidTransitionError):
            settlement_service.update_order_status(order.id, MANUFACTURER, "paid")

    def test_same_status_is_noop(self, order):
        same = settlement_service.update_order_status(order.id, DESIGNER, "pending_payment")
        assert same.status == "pending_payment"

    def test_cannot_skip_payment(self, order):
        with pytest.raises(InvalidTransitionError):
            settlement_service.update_order_status(order.id, DESIGNER, "completed")

    def test_outsider(self, order):
        with pytest.raises(AccessDeniedError):
            settlement_service.update_order_status(order.id, "designer-zed", "paid")


class TestOrders:

    def test_order_totals(self, grant, catalog):
        created = settlement_service.create_order(
            grant.id, DESIGNER,
            [{"productId": catalog["sofa"].id, "quantity": 3}, {"productId": catalog["chair"].id}],
        )

        assert created.status == "pending_payment"
        assert created.settlement_mode == "unset"
        assert created.original_price_cents == 3 * 1000 + 2500
        assert created.total_amount_cents == 5500
        assert len(created.lines) == 2

    def test_only_grantee_orders(self, grant, catalog):
        with pytest.raises(AccessDeniedError):
            settlement_service.create_order(grant.id, MANUFACTURER, [{"productId": catalog["lamp"].id}])

    def test_out_of_scope_product(self, db_session, grant, catalog):
        with pytest.raises(OutOfScopeError):
            settlement_service.create_order(grant.id, DESIGNER, [{"productId": catalog["foreign"].id}])
        assert db_session.query(Order).count() == 0

    def test_revoked_grant(self, grant, catalog):
        authorization_service.revoke_authorization(grant.id, MANUFACTURER)

        with pytest.raises(NotActiveError):
            settlement_service.create_order(grant.id, DESIGNER, [{"productId": catalog["lamp"].id}])

    def test_invoice_markup_percent(self, grant, catalog):
        created = settlement_service.create_order(
            grant.id, DESIGNER, [{"productId": catalog["lamp"].id}],
            need_invoice=True, invoice_markup_percent=6,
        )
        assert created.invoice_markup_amount_cents == 600

        snapshot = settlement_service.select_settlement_mode(created.id, DESIGNER, "supplier_transfer")
        assert snapshot.principal_cents == 10600
        assert snapshot.supplier_price_cents == 3816

    def test_markup_requires_invoice(self, grant, catalog):
        with pytest.raises(ValidationError):
            settlement_service.create_order(
                grant.id, DESIGNER, [{"productId": catalog["lamp"].id}], invoice_markup_amount=500,
            )

    def test_empty_lines(self, grant):
        with pytest.raises(ValidationError):
            settlement_service.create_order(grant.id, DESIGNER, [])


class TestSettlementMode:

    def test_supplier_transfer(self, order):
        snapshot = settlement_service.select_settlement_mode(order.id, DESIGNER, "supplier_transfer")

        assert snapshot.settlement_mode == "supplier_transfer"
        assert snapshot.min_discount_price_cents == 6000
        assert snapshot.supplier_price_cents == 3600
        assert snapshot.commission_status is None

    def test_write_once(self, order):
        settlement_service.select_settlement_mode(order.id, DESIGNER, "supplier_transfer")

        with pytest.raises(SettlementAlreadySetError):
            settlement_service.select_settlement_mode(order.id, DESIGNER, "commission_mode")
        with pytest.raises(SettlementAlreadySetError):
            settlement_service.select_settlement_mode(order.id, DESIGNER, "supplier_transfer")

        assert settlement_service.get_settlement(order.id).settlement_mode == "supplier_transfer"

    def test_concurrent_selection_loses(self, order):
        """A second writer already committed a mode; this caller must conflict."""
        assert order.settlement_mode == "unset"
        assert compare_and_set(
            Order, order.id, field="settlement_mode", expected="unset",
            values={"settlement_mode": "supplier_transfer"},
        )

        with pytest.raises(SettlementAlreadySetError):
            settlement_service.select_settlement_mode(order.id, DESIGNER, "commission_mode")

    def test_ratio_only_for_commission(self, order):
        with pytest.raises(ValidationError):
            settlement_service.select_settlement_mode(
                order.id, DESIGNER, "supplier_transfer", {"paymentRatioEnabled": True, "paymentRatio": 50},
            )

    @pytest.mark.parametrize("ratio", [0, 100, 120])
    def test_ratio_bounds(self, order, ratio):
        with pytest.raises(ValidationError):
            settlement_service.select_settlement_mode(
                order.id, DESIGNER, "commission_mode", {"paymentRatioEnabled": True, "paymentRatio": ratio},
            )

    def test_rate_override_grantor_only(self, order):
        with pytest.raises(AccessDeniedError):
            settlement_service.select_settlement_mode(
                order.id, DESIGNER, "supplier_transfer", {"minDiscountRate": 50},
            )

        snapshot = settlement_service.select_settlement_mode(
            order.id, MANUFACTURER, "supplier_transfer", {"minDiscountRate": 50},
        )
        assert snapshot.min_discount_price_cents == 5000
        assert snapshot.supplier_price_cents == 3000

    def test_cancelled_order(self, order):
        settlement_service.update_order_status(order.id, DESIGNER, "cancelled")

        with pytest.raises(InvalidTransitionError):
            settlement_service.select_settlement_mode(order.id, DESIGNER, "supplier_transfer")

    def test_suspended_grant(self, order, grant):
        authorization_service.suspend_authorization(grant.id, MANUFACTURER)

        with pytest.raises(NotActiveError):
            settlement_service.select_settlement_mode(order.id, DESIGNER, "supplier_transfer")


class TestCommissionLifecycle:

    def _split(self, order):
        return settlement_service.select_settlement_mode(
            order.id, DESIGNER, "commission_mode", {"paymentRatioEnabled": True, "paymentRatio": 50},
        )

    def test_split_snapshot(self, order):
        snapshot = self._split(order)

        assert snapshot.first_payment_amount_cents == 3000
        assert snapshot.remaining_payment_amount_cents == 3000
        assert snapshot.commission_amount_cents == 2400
        assert snapshot.commission_status == "pending"
        assert snapshot.remaining_payment_status == "unpaid"
        assert snapshot.payment_ratio == 50.0

    def test_apply_before_remaining_payment(self, order):
        self._split(order)
        settlement_service.update_order_status(order.id, DESIGNER, "paid")
        settlement_service.update_order_status(order.id, DESIGNER, "completed")

        with pytest.raises(PrematureCommissionError):
            settlement_service.advance_commission(order.id, DESIGNER, "applied")

    def test_apply_before_completion(self, order):
        self._split(order)
        settlement_service.settle_remaining_payment(order.id, DESIGNER)

        with pytest.raises(PrematureCommissionError):
            settlement_service.advance_commission(order.id, DESIGNER, "applied")

    def test_full_lifecycle(self, order):
        self._split(order)
        settlement_service.settle_remaining_payment(order.id, DESIGNER)
        settlement_service.update_order_status(order.id, DESIGNER, "paid")
        settlement_service.update_order_status(order.id, DESIGNER, "completed")

        applied = settlement_service.advance_commission(order.id, DESIGNER, "applied", invoice_ref="INV-7")
        assert applied.commission_status == "applied"
        assert applied.commission_invoice_ref == "INV-7"

        again = settlement_service.advance_commission(order.id, DESIGNER, "applied")
        assert again.commission_applied_at == applied.commission_applied_at

        with pytest.raises(InvalidTransitionError):
            settlement_service.advance_commission(order.id, MANUFACTURER, "paid")
        with pytest.raises(AccessDeniedError):
            settlement_service.advance_commission(order.id, DESIGNER, "approved")

        settlement_service.advance_commission(order.id, MANUFACTURER, "approved")
        paid = settlement_service.advance_commission(
            order.id, MANUFACTURER, "paid", payment_proof_ref="bank-ref-1",
        )
        assert paid.commission_status == "paid"
        assert paid.commission_payment_proof_ref == "bank-ref-1"

        with pytest.raises(InvalidTransitionError):
            settlement_service.advance_commission(order.id, MANUFACTURER, "approved")

    def test_no_commission_in_supplier_transfer(self, order):
        settlement_service.select_settlement_mode(order.id, DESIGNER, "supplier_transfer")

        with pytest.raises(InvalidTransitionError):
            settlement_service.advance_commission(order.id, DESIGNER, "applied")

    def test_remaining_payment_idempotent(self, order):
        self._split(order)

        first = settlement_service.settle_remaining_payment(order.id, DESIGNER)
        second = settlement_service.settle_remaining_payment(order.id, MANUFACTURER)

        assert first.remaining_payment_status == "paid"
        assert second.remaining_payment_paid_at == first.remaining_payment_paid_at

    def test_no_remaining_payment_without_ratio(self, order):
        settlement_service.select_settlement_mode(order.id, DESIGNER, "commission_mode")

        with pytest.raises(InvalidTransitionError):
            settlement_service.settle_remaining_payment(order.id, DESIGNER)

    def test_unsplit_commission_waits_for_completion(self, order):
        settlement_service.select_settlement_mode(order.id, DESIGNER, "commission_mode")

        with pytest.raises(PrematureCommissionError):
            settlement_service.advance_commission(order.id, DESIGNER, "applied")

        settlement_service.update_order_status(order.id, DESIGNER, "paid")
        settlement_service.update_order_status(order.id, DESIGNER, "completed")
        assert settlement_service.advance_commission(order.id, DESIGNER, "applied").commission_status == "applied"
