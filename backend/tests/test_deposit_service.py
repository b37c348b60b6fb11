"""
Unit tests per DepositService e gli schemas dei versamenti.
"""

import uuid
from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from pydantic import ValidationError
from sqlalchemy.exc import OperationalError

from app.core.exceptions import (
    AllocationStateError,
    BusinessValidationError,
    LedgerStoreError,
    NotFoundError,
)
from app.models import Deposit
from app.schemas.deposit import (
    DepositApprove,
    DepositCreate,
    DepositReject,
    DepositUpdate,
)
from app.services.allocation_service import AllocationService
from app.services.deposit_service import DepositService
from app.services.preview_service import PreviewService
from app.services.waterfall_service import WaterfallAllocator
from conftest import FakeDailyAggregator, FakeGapCalculator, MockDeposit, make_result


D = Decimal


# ============================================================
# Schemas
# ============================================================


class TestDepositSchemas:

    def test_net_amount_defaults_to_total_plus_tax(self, method_x):
        data = DepositCreate(
            start_date=date(2024, 3, 1),
            end_date=date(2024, 3, 7),
            total_amount=D("1000.00"),
            tax_amount=D("-50.00"),
            payment_method_id=method_x,
        )

        assert data.net_amount == D("950.00")

    def test_explicit_net_amount_kept(self, method_x):
        data = DepositCreate(
            start_date=date(2024, 3, 1),
            end_date=date(2024, 3, 1),
            total_amount=D("1000.00"),
            net_amount=D("800.00"),
            payment_method_id=method_x,
        )

        assert data.net_amount == D("800.00")

    def test_negative_net_rejected(self, method_x):
        with pytest.raises(ValidationError):
            DepositCreate(
                start_date=date(2024, 3, 1),
                end_date=date(2024, 3, 7),
                total_amount=D("100.00"),
                tax_amount=D("-150.00"),
                payment_method_id=method_x,
            )

    def test_end_before_start_rejected(self, method_x):
        with pytest.raises(ValidationError):
            DepositCreate(
                start_date=date(2024, 3, 7),
                end_date=date(2024, 3, 1),
                total_amount=D("100.00"),
                payment_method_id=method_x,
            )

    def test_at_least_one_method_required(self):
        with pytest.raises(ValidationError):
            DepositCreate(
                start_date=date(2024, 3, 1),
                end_date=date(2024, 3, 7),
                total_amount=D("100.00"),
            )

    def test_primary_method_is_first_of_group(self, method_x, method_y):
        data = DepositCreate(
            start_date=date(2024, 3, 1),
            end_date=date(2024, 3, 7),
            total_amount=D("100.00"),
            payment_method_id=method_x,
            method_group=[{"payment_method_id": method_y}, {"payment_method_id": method_x}],
        )

        assert data.primary_method_id == method_y

    @pytest.mark.parametrize("reason", ["", "   "])
    def test_blank_rejection_reason(self, reason):
        with pytest.raises(ValidationError):
            DepositReject(reason=reason)

    def test_update_period_checked(self):
        with pytest.raises(ValidationError):
            DepositUpdate(start_date=date(2024, 3, 7), end_date=date(2024, 3, 1))

    @pytest.mark.parametrize(
        "payload",
        [
            {"net_amount": None},
            {"start_date": None},
            {"end_date": None},
            {"total_amount": None, "tax_amount": "1.00"},
            {"method_group": None},
        ],
    )
    def test_update_rejects_explicit_null(self, payload):
        """Test null esplicito su colonne NOT NULL: errore di validazione, non 500."""
        with pytest.raises(ValidationError, match="non annullabili"):
            DepositUpdate.model_validate(payload)

    def test_update_accepts_null_notes(self):
        data = DepositUpdate.model_validate({"notes": None})

        assert data.model_dump(exclude_unset=True) == {"notes": None}


# ============================================================
# Service
# ============================================================


def _allocation_service(method_x, method_y):
    return AllocationService(
        allocator=WaterfallAllocator(
            gap_calculator=FakeGapCalculator({method_x: D("600"), method_y: D("800")})
        ),
        aggregator=FakeDailyAggregator(),
    )


class TestDepositCreate:

    async def test_create_stores_pending_deposit(self, mock_db, method_x, method_y):
        mock_db.execute.return_value = make_result(scalars=[method_x, method_y])
        data = DepositCreate(
            start_date=date(2024, 3, 1),
            end_date=date(2024, 3, 7),
            total_amount=D("1000.00"),
            method_group=[{"payment_method_id": method_x}, {"payment_method_id": method_y}],
        )

        deposit = await DepositService().create(mock_db, data)

        assert isinstance(deposit, Deposit)
        assert deposit.status == "pending"
        assert deposit.payment_method_id == method_x
        assert deposit.method_group == [
            {"payment_method_id": str(method_x)},
            {"payment_method_id": str(method_y)},
        ]
        assert deposit.net_amount == D("1000.00")
        mock_db.add.assert_called_once_with(deposit)
        mock_db.commit.assert_awaited_once()

    async def test_create_with_inactive_method(self, mock_db, method_x, method_y):
        """Test metodo disattivato o inesistente: nessun inserimento."""
        mock_db.execute.return_value = make_result(scalars=[method_x])
        data = DepositCreate(
            start_date=date(2024, 3, 1),
            end_date=date(2024, 3, 7),
            total_amount=D("1000.00"),
            method_group=[{"payment_method_id": method_x}, {"payment_method_id": method_y}],
        )

        with pytest.raises(BusinessValidationError) as exc_info:
            await DepositService().create(mock_db, data)

        assert exc_info.value.extra == {"payment_method_ids": [str(method_y)]}
        mock_db.add.assert_not_called()

    async def test_create_warms_pending_previews(self, mock_db, method_x):
        mock_db.execute.return_value = make_result(scalars=[method_x])
        preview_service = MagicMock(spec=PreviewService)
        preview_service.warm_pending = AsyncMock(return_value=1)
        data = DepositCreate(
            start_date=date(2024, 3, 1),
            end_date=date(2024, 3, 7),
            total_amount=D("10.00"),
            payment_method_id=method_x,
        )

        await DepositService(preview_service=preview_service).create(mock_db, data)

        preview_service.warm_pending.assert_awaited_once_with(mock_db)

    async def test_warm_failure_does_not_fail_create(self, mock_db, method_x):
        mock_db.execute.return_value = make_result(scalars=[method_x])
        preview_service = MagicMock(spec=PreviewService)
        preview_service.warm_pending = AsyncMock(side_effect=LedgerStoreError("ledger non raggiungibile"))
        data = DepositCreate(
            start_date=date(2024, 3, 1),
            end_date=date(2024, 3, 7),
            total_amount=D("10.00"),
            payment_method_id=method_x,
        )

        deposit = await DepositService(preview_service=preview_service).create(mock_db, data)

        assert deposit.status == "pending"


class TestDepositUpdate:

    async def test_net_recomputed_from_total_and_tax(self, mock_db, pending_deposit):
        mock_db.get.return_value = pending_deposit

        deposit = await DepositService().update(
            mock_db, pending_deposit.id, DepositUpdate(total_amount=D("1200.00"), tax_amount=D("-200.00"))
        )

        assert deposit.net_amount == D("1000.00")
        mock_db.commit.assert_awaited_once()

    async def test_only_pending_can_be_updated(self, mock_db, approved_deposit):
        mock_db.get.return_value = approved_deposit

        with pytest.raises(AllocationStateError):
            await DepositService().update(mock_db, approved_deposit.id, DepositUpdate(notes="x"))
        mock_db.commit.assert_not_awaited()

    async def test_inverted_period_after_merge(self, mock_db, pending_deposit):
        """Test periodo invertito dopo l'applicazione della sola data di fine."""
        mock_db.get.return_value = pending_deposit

        with pytest.raises(BusinessValidationError):
            await DepositService().update(mock_db, pending_deposit.id, DepositUpdate(end_date=date(2024, 2, 1)))
        mock_db.commit.assert_not_awaited()

    async def test_update_invalidates_preview(self, mock_db, pending_deposit):
        mock_db.get.return_value = pending_deposit
        preview_service = MagicMock(spec=PreviewService)
        preview_service.invalidate = AsyncMock()
        preview_service.warm_pending = AsyncMock(return_value=0)

        await DepositService(preview_service=preview_service).update(
            mock_db, pending_deposit.id, DepositUpdate(notes="rettifica")
        )

        preview_service.invalidate.assert_awaited_once_with(pending_deposit.id)
        preview_service.warm_pending.assert_awaited_once()


class TestDepositReview:

    async def test_approve_writes_allocations_in_same_transaction(self, mock_db, pending_deposit, method_x, method_y):
        mock_db.get.return_value = pending_deposit
        service = DepositService(allocation_service=_allocation_service(method_x, method_y))

        deposit = await service.approve(mock_db, pending_deposit.id, DepositApprove(reviewed_by="mrossi"))

        assert deposit.status == "approved"
        assert deposit.reviewed_by == "mrossi"
        assert deposit.reviewed_at is not None
        rows = mock_db.add_all.call_args.args[0]
        assert [(r.payment_method_id, r.allocated_amount) for r in rows] == [
            (method_x, D("600.00")),
            (method_y, D("400.00")),
        ]
        assert deposit.remaining_amount == D("0.00")
        mock_db.commit.assert_awaited_once()

    async def test_approve_twice_rejected(self, mock_db, approved_deposit, method_x, method_y):
        mock_db.get.return_value = approved_deposit
        service = DepositService(allocation_service=_allocation_service(method_x, method_y))

        with pytest.raises(AllocationStateError):
            await service.approve(mock_db, approved_deposit.id, DepositApprove())

        mock_db.add_all.assert_not_called()
        mock_db.rollback.assert_awaited_once()

    async def test_approve_store_failure_keeps_pending_semantics(self, mock_db, pending_deposit, method_x, method_y):
        """Test errore durante il commit delle allocazioni: rollback e LedgerStoreError."""
        mock_db.get.return_value = pending_deposit
        mock_db.flush.side_effect = OperationalError("INSERT", {}, Exception("connection lost"))
        service = DepositService(allocation_service=_allocation_service(method_x, method_y))

        with pytest.raises(LedgerStoreError):
            await service.approve(mock_db, pending_deposit.id, DepositApprove())

        mock_db.rollback.assert_awaited_once()
        mock_db.commit.assert_not_awaited()

    async def test_approve_missing_deposit(self, mock_db):
        mock_db.get.return_value = None

        with pytest.raises(NotFoundError):
            await DepositService().approve(mock_db, uuid.uuid4(), DepositApprove())

    async def test_reject_sets_reason(self, mock_db, pending_deposit):
        mock_db.get.return_value = pending_deposit

        deposit = await DepositService().reject(
            mock_db, pending_deposit.id, DepositReject(reason="  importo errato  ")
        )

        assert deposit.status == "rejected"
        assert deposit.rejection_reason == "importo errato"
        mock_db.add_all.assert_not_called()

    async def test_reject_terminal_state(self, mock_db, method_x):
        deposit = MockDeposit(payment_method_id=method_x, status="rejected", rejection_reason="duplicato")
        mock_db.get.return_value = deposit

        with pytest.raises(AllocationStateError):
            await DepositService().reject(mock_db, deposit.id, DepositReject(reason="altro"))


class TestDepositDelete:

    async def test_delete_clears_allocations(self, mock_db, approved_deposit):
        mock_db.get.return_value = approved_deposit
        mock_db.execute.return_value = make_result(rowcount=2)
        preview_service = MagicMock(spec=PreviewService)
        preview_service.discard = AsyncMock()

        await DepositService(preview_service=preview_service).delete(mock_db, approved_deposit.id)

        assert "DELETE FROM deposit_allocations" in str(mock_db.execute.await_args.args[0])
        mock_db.delete.assert_awaited_once_with(approved_deposit)
        mock_db.commit.assert_awaited_once()
        preview_service.discard.assert_awaited_once_with(approved_deposit.id)
