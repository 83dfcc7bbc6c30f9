"""
Tests for the gateway B callback reconciler
"""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from conftest import FakeStorage
from storefront.checkout.assembler import OrderAssembler
from storefront.checkout.models import GatewaySession, PendingRedirect
from storefront.errors import ApiError, OrderCreationFailed, OrderDataMissing
from storefront.payments.constants import VerificationStatus
from storefront.payments.reconciler import (
    CallbackReconciler,
    ReconcileStatus,
    ReconciliationGuard,
    ReconciliationRegistry,
    ReturnParams,
)
from storefront.storage import StorageKeys

RETURN_URL = "https://shop.test/order-success?gateway=cashfree&order_id=order_42&payment_id={payment_id}"


@pytest.fixture
def pending_storage(storage, sample_draft):
    sample_draft.selected_gateway = "cashfree"
    session = GatewaySession("cashfree", "order_42", "session_abc")
    storage.data[StorageKeys.GATEWAY_B_PENDING] = PendingRedirect(session, sample_draft).to_json()
    storage.data["cart"] = "[]"
    return storage


class TestReturnParams:

    def test_parse_full_url(self):
        params = ReturnParams.parse(RETURN_URL)

        assert params.is_gateway_b
        assert params.order_id == "order_42"
        assert params.payment_id == "{payment_id}"
        assert params.has_real_payment_id is False

    def test_parse_query_and_alias(self):
        params = ReturnParams.parse("gateway=B&order_id=order_7&payment_id=cf_pay_1")

        assert params.is_gateway_b
        assert params.has_real_payment_id

    def test_parse_mapping(self):
        params = ReturnParams.parse({"gateway": "razorpay", "order_id": "x", "payment_id": None})

        assert not params.is_gateway_b
        assert params.payment_id is None


class TestGuard:

    def test_single_shot(self):
        guard = ReconciliationGuard("order_42")

        assert guard.try_acquire() is True
        assert guard.try_acquire() is False
        guard.finish()
        assert guard.try_acquire() is False
        assert guard.processed

    def test_release_only_from_processing(self):
        guard = ReconciliationGuard("order_42")

        assert guard.try_acquire() is True
        guard.release()
        assert guard.processed is False
        assert guard.try_acquire() is True
        guard.finish()
        guard.release()
        assert guard.processed

    def test_registry_evicts_oldest(self):
        registry = ReconciliationRegistry(max_entries=2)
        first = registry.guard_for("a")
        registry.guard_for("b")
        registry.guard_for("c")

        assert len(registry) == 2
        assert registry.guard_for("a") is not first
        assert registry.guard_for("c") is registry.guard_for("c")

    def test_registry_keys_on_scope(self):
        registry = ReconciliationRegistry()

        assert registry.guard_for("order_42", "browser-1") is not registry.guard_for("order_42", "browser-2")
        assert registry.guard_for("order_42", "browser-1") is registry.guard_for("order_42", "browser-1")


class TestHandleReturn:

    @pytest.mark.asyncio
    async def test_not_gateway_b_is_noop(self, fake_api, pending_storage):
        reconciler = CallbackReconciler(fake_api, pending_storage)

        result = await reconciler.handle_return("gateway=razorpay&order_id=order_42")

        assert result.status is ReconcileStatus.IGNORED
        fake_api.create_order.assert_not_called()
        assert StorageKeys.GATEWAY_B_PENDING in pending_storage.data

    @pytest.mark.asyncio
    async def test_real_payment_id_verified(self, fake_api, pending_storage):
        reconciler = CallbackReconciler(fake_api, pending_storage)

        result = await reconciler.handle_return(
            "gateway=cashfree&order_id=order_42&payment_id=cf_pay_1"
        )

        assert result.status is ReconcileStatus.COMPLETED
        assert result.verification is VerificationStatus.VERIFIED
        fake_api.verify_gateway_b_payment.assert_awaited_once_with("order_42", "cf_pay_1")
        payload = fake_api.create_order.await_args.args[0]
        assert payload["gatewayEvidence"] == {
            "gateway": "cashfree",
            "orderRef": "order_42",
            "paymentRef": "cf_pay_1",
            "verification": "verified",
        }
        assert StorageKeys.GATEWAY_B_PENDING not in pending_storage.data
        snapshot = json.loads(pending_storage.data[StorageKeys.LAST_COMPLETED_ORDER])
        assert snapshot["orderId"] == "ord-1"
        assert snapshot["verification"] == "verified"
        assert pending_storage.data["cart"] == "[]"

    @pytest.mark.asyncio
    async def test_placeholder_resolved_by_lookup(self, fake_api, pending_storage):
        reconciler = CallbackReconciler(fake_api, pending_storage)

        result = await reconciler.handle_return(RETURN_URL)

        assert result.verification is VerificationStatus.RESOLVED
        assert result.evidence.payment_ref == "cf_pay_9"
        fake_api.lookup_gateway_b_payment.assert_awaited_once_with("order_42")
        fake_api.verify_gateway_b_payment.assert_not_called()

    @pytest.mark.asyncio
    async def test_placeholder_lookup_failure_still_creates_order(self, fake_api, pending_storage, caplog):
        fake_api.lookup_gateway_b_payment = AsyncMock(side_effect=ApiError("gateway down", 502))
        reconciler = CallbackReconciler(fake_api, pending_storage)

        with caplog.at_level("WARNING"):
            result = await reconciler.handle_return(RETURN_URL)

        assert result.status is ReconcileStatus.COMPLETED
        assert result.verification is VerificationStatus.UNVERIFIED_REDIRECT
        assert fake_api.create_order.await_count == 1
        payload = fake_api.create_order.await_args.args[0]
        assert payload["gatewayEvidence"]["verification"] == "unverified-but-redirected"
        assert payload["gatewayEvidence"]["paymentRef"] is None
        assert "unverified-but-redirected" in caplog.text

    @pytest.mark.asyncio
    async def test_real_id_verification_failure_is_lenient(self, fake_api, pending_storage):
        fake_api.verify_gateway_b_payment = AsyncMock(side_effect=ApiError("not found", 404))
        reconciler = CallbackReconciler(fake_api, pending_storage)

        result = await reconciler.handle_return("gateway=cashfree&order_id=order_42&payment_id=cf_pay_1")

        assert result.verification is VerificationStatus.UNVERIFIED_REDIRECT
        assert result.evidence.payment_ref == "cf_pay_1"

    @pytest.mark.asyncio
    async def test_duplicate_sequential_calls(self, fake_api, pending_storage):
        reconciler = CallbackReconciler(fake_api, pending_storage)

        first = await reconciler.handle_return(RETURN_URL)
        second = await reconciler.handle_return(RETURN_URL)

        assert first.status is ReconcileStatus.COMPLETED
        assert second.status is ReconcileStatus.DUPLICATE
        assert fake_api.create_order.await_count == 1

    @pytest.mark.asyncio
    async def test_concurrent_calls_create_one_order(self, fake_api, pending_storage):
        reconciler = CallbackReconciler(fake_api, pending_storage)

        results = await asyncio.gather(
            reconciler.handle_return(RETURN_URL),
            reconciler.handle_return(RETURN_URL),
        )

        assert sorted(r.status.value for r in results) == ["completed", "duplicate"]
        assert fake_api.create_order.await_count == 1

    @pytest.mark.asyncio
    async def test_missing_draft_fails_closed(self, fake_api, storage):
        reconciler = CallbackReconciler(fake_api, storage)

        with pytest.raises(OrderDataMissing):
            await reconciler.handle_return(RETURN_URL)

        fake_api.create_order.assert_not_called()

    @pytest.mark.asyncio
    async def test_mismatched_pending_record_left_in_place(self, fake_api, pending_storage):
        reconciler = CallbackReconciler(fake_api, pending_storage)

        with pytest.raises(OrderDataMissing):
            await reconciler.handle_return("gateway=cashfree&order_id=order_99&payment_id=cf_1")

        assert StorageKeys.GATEWAY_B_PENDING in pending_storage.data
        fake_api.create_order.assert_not_called()

    @pytest.mark.asyncio
    async def test_corrupted_pending_record_dropped(self, fake_api, storage):
        storage.data[StorageKeys.GATEWAY_B_PENDING] = "{oops"

        with pytest.raises(OrderDataMissing):
            await CallbackReconciler(fake_api, storage).handle_return(RETURN_URL)

        assert StorageKeys.GATEWAY_B_PENDING not in storage.data

    @pytest.mark.asyncio
    async def test_order_failure_clears_draft_and_never_retries(self, fake_api, pending_storage):
        fake_api.create_order = AsyncMock(side_effect=ApiError("Insufficient stock", 400))
        reconciler = CallbackReconciler(fake_api, pending_storage)

        with pytest.raises(OrderCreationFailed) as exc_info:
            await reconciler.handle_return(RETURN_URL)

        assert exc_info.value.message == "Insufficient stock"
        assert StorageKeys.GATEWAY_B_PENDING not in pending_storage.data
        assert StorageKeys.LAST_COMPLETED_ORDER not in pending_storage.data

        second = await reconciler.handle_return(RETURN_URL)
        assert second.status is ReconcileStatus.DUPLICATE
        assert fake_api.create_order.await_count == 1

    @pytest.mark.asyncio
    async def test_total_survives_redirect_round_trip(self, fake_api, pending_storage, sample_draft):
        before = OrderAssembler().assemble(sample_draft).to_dict()["totalPrice"]

        await CallbackReconciler(fake_api, pending_storage).handle_return(RETURN_URL)

        after = fake_api.create_order.await_args.args[0]["totalPrice"]
        assert after == before == 750.0

    @pytest.mark.asyncio
    async def test_shared_registry_spans_instances(self, fake_api, pending_storage):
        registry = ReconciliationRegistry()

        await CallbackReconciler(fake_api, pending_storage, registry=registry).handle_return(RETURN_URL)
        result = await CallbackReconciler(fake_api, pending_storage, registry=registry).handle_return(RETURN_URL)

        assert result.status is ReconcileStatus.DUPLICATE
        assert fake_api.create_order.await_count == 1

    @pytest.mark.asyncio
    async def test_shared_registry_blocks_concurrent_instances(self, fake_api, pending_storage):
        async def slow_verify(order_ref, payment_id):
            await asyncio.sleep(0.01)
            return {"verified": True}

        fake_api.verify_gateway_b_payment = AsyncMock(side_effect=slow_verify)
        registry = ReconciliationRegistry()
        url = RETURN_URL.replace("{payment_id}", "cf_pay_1")

        results = await asyncio.gather(
            CallbackReconciler(fake_api, pending_storage, registry=registry).handle_return(url),
            CallbackReconciler(fake_api, pending_storage, registry=registry).handle_return(url),
        )

        assert sorted(r.status.value for r in results) == ["completed", "duplicate"]
        assert fake_api.create_order.await_count == 1

    @pytest.mark.asyncio
    async def test_missing_record_does_not_spend_guard(self, fake_api, pending_storage):
        registry = ReconciliationRegistry()
        empty = CallbackReconciler(fake_api, FakeStorage(), registry=registry)

        with pytest.raises(OrderDataMissing):
            await empty.handle_return(RETURN_URL)

        result = await CallbackReconciler(fake_api, pending_storage, registry=registry).handle_return(RETURN_URL)

        assert result.status is ReconcileStatus.COMPLETED
        assert fake_api.create_order.await_count == 1

    @pytest.mark.asyncio
    async def test_guards_are_scoped_per_client(self, fake_api, pending_storage):
        registry = ReconciliationRegistry()
        other_storage = FakeStorage(pending_storage.data)

        first = await CallbackReconciler(
            fake_api, pending_storage, registry=registry, scope="browser-1"
        ).handle_return(RETURN_URL)
        repeat = await CallbackReconciler(
            fake_api, pending_storage, registry=registry, scope="browser-1"
        ).handle_return(RETURN_URL)
        other = await CallbackReconciler(
            fake_api, other_storage, registry=registry, scope="browser-2"
        ).handle_return(RETURN_URL)

        assert first.status is ReconcileStatus.COMPLETED
        assert repeat.status is ReconcileStatus.DUPLICATE
        assert other.status is ReconcileStatus.COMPLETED
        assert fake_api.create_order.await_count == 2

    @pytest.mark.asyncio
    async def test_confirmation_stash_failure_still_completes(self, fake_api, pending_storage, caplog):
        async def failing_set(key, value, ttl=None):
            if key == StorageKeys.LAST_COMPLETED_ORDER:
                raise ConnectionError("redis unavailable")
            pending_storage.data[key] = value

        pending_storage.set = failing_set

        with caplog.at_level("ERROR"):
            result = await CallbackReconciler(fake_api, pending_storage).handle_return(RETURN_URL)

        assert result.status is ReconcileStatus.COMPLETED
        assert result.confirmation["orderId"] == "ord-1"
        assert StorageKeys.LAST_COMPLETED_ORDER not in pending_storage.data
        assert "Failed to stash confirmation" in caplog.text
