"""
Debt allocator tests.

Verifies:
- payments are applied oldest due date first, insertion order on ties
- a covered debt ends paid with a zero amount; a partial one is reduced
- overpayment is discarded, never stored as credit
- bad amounts and unknown clients change nothing
"""

from datetime import date

import pytest

from stockledger.models import Client, Debt
from stockledger.services import debt_service
from stockledger.validation import ValidationError, NotFoundError


def _debt(name, amount_cents, due, description=None):
    return debt_service.create_debt(
        debtor_name=name,
        amount_cents=amount_cents,
        due_date=due,
        description=description,
    )


def _state(db_session, debt_id):
    debt = db_session.get(Debt, debt_id)
    return debt.amount_cents, debt.is_paid


class TestSettlePayment:

    def test_fifo_allocation(self, db_session):
        # created out of due order on purpose
        d2 = _debt("Luis", 5000, date(2026, 1, 5))
        d3 = _debt("Luis", 2000, date(2026, 1, 10))
        d1 = _debt("Luis", 3000, date(2026, 1, 1))

        result = debt_service.settle_payment("Luis", 7000)

        assert _state(db_session, d1.id) == (0, True)
        assert _state(db_session, d2.id) == (1000, False)
        assert _state(db_session, d3.id) == (2000, False)
        assert result.applied_cents == 7000
        assert result.discarded_cents == 0
        assert [d.id for d in result.debts] == [d1.id, d2.id]

    def test_same_due_date_keeps_insertion_order(self, db_session):
        first = _debt("Luis", 1000, "2026-03-01")
        second = _debt("Luis", 1000, "2026-03-01")

        debt_service.settle_payment("Luis", 1500)

        assert _state(db_session, first.id) == (0, True)
        assert _state(db_session, second.id) == (500, False)

    def test_exact_payment_clears_everything(self, db_session):
        a = _debt("Luis", 1200, "2026-03-01")
        b = _debt("Luis", 800, "2026-03-02")

        result = debt_service.settle_payment("Luis", 2000)

        assert _state(db_session, a.id) == (0, True)
        assert _state(db_session, b.id) == (0, True)
        assert result.discarded_cents == 0

    def test_overpayment_is_discarded(self, db_session):
        a = _debt("Luis", 1000, "2026-03-01")
        b = _debt("Luis", 2000, "2026-03-02")

        result = debt_service.settle_payment("Luis", 5000)

        assert _state(db_session, a.id) == (0, True)
        assert _state(db_session, b.id) == (0, True)
        assert result.applied_cents == 3000
        assert result.discarded_cents == 2000
        assert all(d.amount_cents >= 0 for d in db_session.query(Debt).all())

    def test_client_without_open_debts_discards_payment(self, db_session):
        debt_service.add_client("Luis")

        result = debt_service.settle_payment("Luis", 500)

        assert result.applied_cents == 0
        assert result.discarded_cents == 500
        assert result.debts == []

    def test_paid_debts_are_skipped(self, db_session):
        old = _debt("Luis", 1000, "2026-01-01")
        debt_service.toggle_debt_paid(old.id)
        newer = _debt("Luis", 1000, "2026-02-01")

        debt_service.settle_payment("Luis", 400)

        assert _state(db_session, old.id) == (1000, True)
        assert _state(db_session, newer.id) == (600, False)

    def test_other_clients_untouched(self, db_session):
        mine = _debt("Luis", 1000, "2026-01-01")
        theirs = _debt("Ana", 1000, "2025-01-01")

        debt_service.settle_payment("Luis", 1000)

        assert _state(db_session, mine.id) == (0, True)
        assert _state(db_session, theirs.id) == (1000, False)

    @pytest.mark.parametrize("amount", [0, -100, 10.5, "100", None, True])
    def test_invalid_amount_changes_nothing(self, db_session, amount):
        debt = _debt("Luis", 1000, "2026-01-01")

        with pytest.raises(ValidationError):
            debt_service.settle_payment("Luis", amount)

        assert _state(db_session, debt.id) == (1000, False)

    def test_unknown_client(self, db_session):
        with pytest.raises(NotFoundError):
            debt_service.settle_payment("Nobody", 1000)


class TestSettleAll:

    def test_marks_open_debts_paid_keeping_amounts(self, db_session):
        a = _debt("Luis", 1000, "2026-01-01")
        b = _debt("Luis", 2500, "2026-02-01")
        other = _debt("Ana", 700, "2026-01-01")

        debts = debt_service.settle_all("Luis")

        assert {d.id for d in debts} == {a.id, b.id}
        assert _state(db_session, a.id) == (1000, True)
        assert _state(db_session, b.id) == (2500, True)
        assert _state(db_session, other.id) == (700, False)

    def test_unknown_client(self, db_session):
        with pytest.raises(NotFoundError):
            debt_service.settle_all("Nobody")


class TestDebtsAndClients:

    def test_create_debt_registers_client(self, db_session):
        _debt("Luis", 1000, "2026-01-01")

        assert debt_service.list_clients() == ["Luis"]

    def test_create_debt_accepts_full_timestamp_due_date(self, db_session):
        debt = _debt("Luis", 1000, "2026-01-01T15:30:00Z")

        assert debt.due_date == date(2026, 1, 1)

    @pytest.mark.parametrize("kwargs", [
        {"debtor_name": "", "amount_cents": 100, "due_date": "2026-01-01"},
        {"debtor_name": "Luis", "amount_cents": -1, "due_date": "2026-01-01"},
        {"debtor_name": "Luis", "amount_cents": 100, "due_date": "not a date"},
        {"debtor_name": "Luis", "amount_cents": 100, "due_date": None},
    ])
    def test_create_debt_rejects_bad_input(self, db_session, kwargs):
        with pytest.raises(ValidationError):
            debt_service.create_debt(**kwargs)
        assert db_session.query(Debt).count() == 0

    def test_delete_debt_keeps_client(self, db_session):
        debt = _debt("Luis", 1000, "2026-01-01")

        debt_service.delete_debt(debt.id)

        assert db_session.query(Debt).count() == 0
        assert debt_service.list_clients() == ["Luis"]

    def test_delete_client_cascades_to_debts(self, db_session):
        _debt("Luis", 1000, "2026-01-01")
        _debt("Luis", 2000, "2026-01-02")
        kept = _debt("Ana", 500, "2026-01-01")

        removed = debt_service.delete_client("Luis")

        assert removed == 2
        assert [d.id for d in db_session.query(Debt).all()] == [kept.id]
        assert db_session.query(Client).filter_by(name="Luis").count() == 0

    def test_add_client_is_idempotent(self, db_session):
        debt_service.add_client("Luis")
        debt_service.add_client(" Luis ")

        assert debt_service.list_clients() == ["Luis"]

    def test_update_debt_registers_new_debtor(self, db_session):
        debt = _debt("Luis", 1000, "2026-01-01")

        debt_service.update_debt(debt.id, {"debtor_name": "Ana", "amount_cents": 400})

        assert _state(db_session, debt.id) == (400, False)
        assert debt_service.list_clients() == ["Luis", "Ana"]

    def test_toggle_unknown_debt(self, db_session):
        with pytest.raises(NotFoundError):
            debt_service.toggle_debt_paid("missing")

    def test_list_debts_open_only(self, db_session):
        paid = _debt("Luis", 1000, "2026-01-01")
        debt_service.toggle_debt_paid(paid.id)
        open_debt = _debt("Luis", 500, "2026-02-01")

        assert [d.id for d in debt_service.list_debts(include_paid=False)] == [open_debt.id]
        assert len(debt_service.list_debts(client_name="Luis")) == 2
