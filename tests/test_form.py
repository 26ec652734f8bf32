"""Unit tests for DealFormController: local validation, role rules, store rejections."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from src.salesboard.core.errors import InsertRejected, ValidationError
from src.salesboard.sales.aggregator import SalesViewModel
from src.salesboard.sales.form import DealFormController, parse_deal_value
from src.salesboard.sales.schemas import NewDeal
from tests.fakes import ADMIN, NOW, REP_A, REP_B


class TestParseDealValue:
    @pytest.mark.parametrize("raw,expected", [(5, 5), ("42", 42), (" 7 ", 7), (3.0, 3)])
    def test_accepts_positive_whole_numbers(self, raw, expected):
        assert parse_deal_value(raw) == expected

    @pytest.mark.parametrize("raw", [0, -3, "0", "-1"])
    def test_rejects_non_positive(self, raw):
        with pytest.raises(ValidationError, match="greater than zero"):
            parse_deal_value(raw)

    @pytest.mark.parametrize("raw", ["abc", "", "12.5", 2.5, None, True, [1]])
    def test_rejects_non_numbers(self, raw):
        with pytest.raises(ValidationError, match="whole number"):
            parse_deal_value(raw)


class TestRepChoices:
    def test_rep_only_sees_themself(self):
        assert DealFormController.rep_choices(REP_B, [ADMIN, REP_A, REP_B]) == [REP_B]

    def test_admin_sees_reps_sorted_by_name(self):
        assert DealFormController.rep_choices(ADMIN, [REP_B, ADMIN, REP_A]) == [REP_A, REP_B]


class TestSubmit:
    @pytest.mark.asyncio
    async def test_rep_inserts_own_deal(self, backend):
        controller = DealFormController(backend.store)

        deal_id = await controller.submit(REP_A, "u1", "250")

        assert backend.store.insert_calls == [NewDeal(rep_id="u1", value=250)]
        assert deal_id == backend.store.deals[-1].id

    @pytest.mark.asyncio
    async def test_admin_inserts_for_any_rep(self, backend):
        controller = DealFormController(backend.store)

        await controller.submit(ADMIN, "u2", 900)

        assert backend.store.insert_calls == [NewDeal(rep_id="u2", value=900)]

    @pytest.mark.asyncio
    async def test_rep_cannot_target_another_rep(self, backend):
        controller = DealFormController(backend.store)

        with pytest.raises(ValidationError, match="own deals"):
            await controller.submit(REP_A, "u2", 10)

        assert backend.store.insert_calls == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("value", ["", "x", 0, -5])
    async def test_invalid_value_never_reaches_store(self, value):
        store = AsyncMock()
        controller = DealFormController(store)

        with pytest.raises(ValidationError):
            await controller.submit(ADMIN, "u1", value)

        store.insert_deal.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_rep_is_a_validation_error(self, backend):
        controller = DealFormController(backend.store)

        with pytest.raises(ValidationError, match="representative"):
            await controller.submit(ADMIN, "  ", 10)

        assert backend.store.insert_calls == []

    @pytest.mark.asyncio
    async def test_store_rejection_propagates(self, backend):
        backend.store.reject_inserts = InsertRejected("You are not allowed to add this deal.")
        controller = DealFormController(backend.store)

        with pytest.raises(InsertRejected, match="not allowed"):
            await controller.submit(REP_A, "u1", 10)

    @pytest.mark.asyncio
    async def test_rep_submission_is_the_only_row(self, backend):
        vm = SalesViewModel(backend.store, backend.feed, clock=lambda: NOW)
        try:
            await vm.initialize(REP_A.id)
            await DealFormController(backend.store).submit(REP_A, REP_A.id, 500)
            await vm.settle()

            assert [(r.rep_id, r.total_value) for r in vm.current_snapshot()] == [("u1", 500)]
        finally:
            await vm.dispose()

    @pytest.mark.asyncio
    async def test_admin_submissions_for_one_rep_add_up(self, backend):
        vm = SalesViewModel(backend.store, backend.feed, clock=lambda: NOW)
        try:
            await vm.initialize(ADMIN.id)
            controller = DealFormController(backend.store)
            await controller.submit(ADMIN, REP_B.id, 300)
            await controller.submit(ADMIN, REP_B.id, 700)
            await vm.settle()

            (row,) = vm.current_snapshot()
            assert (row.rep_name, row.total_value, row.deal_count) == ("Bob", 1000, 2)
        finally:
            await vm.dispose()

    @pytest.mark.asyncio
    async def test_own_insert_reaches_aggregate_once_via_feed(self, backend):
        vm = SalesViewModel(backend.store, backend.feed, clock=lambda: NOW)
        try:
            await vm.initialize("u1")
            await DealFormController(backend.store).submit(REP_A, "u1", 30)
            await vm.settle()

            (row,) = vm.current_snapshot()
            assert (row.rep_id, row.total_value, row.deal_count) == ("u1", 30, 1)
        finally:
            await vm.dispose()
