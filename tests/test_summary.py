from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.orm import sessionmaker

from database import Base, build_engine
from errors import InvalidInput
from models import Transaction, TransactionType, User
from periods import Period, resolve_period
from schemas import TransactionIn
from services import CategoryService, MetricsService, TransactionService


def make_session():
    engine = build_engine("sqlite+pysqlite:///:memory:")
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def make_user(session, username: str) -> User:
    user = User(username=username, email=f"{username}@example.com", password_hash="x")
    session.add(user)
    session.commit()
    return user


def add(service: TransactionService, amount: str, type_, category: str, on: date):
    return service.create(
        TransactionIn(amount=Decimal(amount), type=type_, category=category, date=on)
    )


def test_summary_nets_income_and_expenses_with_expense_only_breakdown() -> None:
    session = make_session()
    alice = make_user(session, "alice")
    txns = TransactionService(session, alice.id)
    add(txns, "1000.00", TransactionType.income, "Salary", date(2024, 3, 1))
    add(txns, "400.00", TransactionType.expense, "Rent", date(2024, 3, 2))

    summary = MetricsService(session, alice.id).summary()

    assert summary["totalIncome"] == Decimal("1000.00")
    assert summary["totalExpenses"] == Decimal("400.00")
    assert summary["balance"] == Decimal("600.00")
    assert summary["categories"] == [{"name": "Rent", "total": Decimal("400.00")}]
    assert summary["period"] == {"startDate": "All Time", "endDate": "All Time"}


def test_empty_summary_is_all_zeros() -> None:
    session = make_session()
    alice = make_user(session, "alice")

    summary = MetricsService(session, alice.id).summary()

    assert summary["totalIncome"] == Decimal("0")
    assert summary["totalExpenses"] == Decimal("0")
    assert summary["balance"] == Decimal("0.00")
    assert summary["categories"] == []


def test_breakdown_sums_per_category_and_matches_total_expenses() -> None:
    session = make_session()
    alice = make_user(session, "alice")
    txns = TransactionService(session, alice.id)
    add(txns, "10.10", TransactionType.expense, "Food", date(2024, 1, 1))
    add(txns, "0.20", TransactionType.expense, "food", date(2024, 1, 2))
    add(txns, "5.00", TransactionType.expense, "Bus", date(2024, 1, 3))
    add(txns, "99.99", TransactionType.income, "Gift", date(2024, 1, 4))

    summary = MetricsService(session, alice.id).summary()

    assert summary["categories"] == [
        {"name": "Bus", "total": Decimal("5.00")},
        {"name": "Food", "total": Decimal("10.30")},
    ]
    assert sum(c["total"] for c in summary["categories"]) == summary["totalExpenses"]
    assert summary["balance"] == summary["totalIncome"] - summary["totalExpenses"]


def test_summary_window_is_inclusive_and_skips_deleted_and_foreign_rows() -> None:
    session = make_session()
    alice = make_user(session, "alice")
    bob = make_user(session, "bob")
    txns = TransactionService(session, alice.id)
    add(txns, "100.00", TransactionType.income, "Salary", date(2024, 2, 29))
    add(txns, "200.00", TransactionType.income, "Salary", date(2024, 3, 1))
    add(txns, "30.00", TransactionType.expense, "Food", date(2024, 3, 31))
    removed = add(txns, "70.00", TransactionType.expense, "Food", date(2024, 3, 15))
    txns.soft_delete(removed.id)
    add(txns, "40.00", TransactionType.expense, "Food", date(2024, 4, 1))
    add(
        TransactionService(session, bob.id),
        "500.00",
        TransactionType.income,
        "Salary",
        date(2024, 3, 10),
    )

    period = resolve_period("2024-03-01", "2024-03-31")
    summary = MetricsService(session, alice.id).summary(period)

    assert summary["totalIncome"] == Decimal("200.00")
    assert summary["totalExpenses"] == Decimal("30.00")
    assert summary["balance"] == Decimal("170.00")
    assert summary["period"] == {"startDate": "2024-03-01", "endDate": "2024-03-31"}


def test_half_open_window_reports_all_time_for_missing_bound() -> None:
    session = make_session()
    alice = make_user(session, "alice")
    txns = TransactionService(session, alice.id)
    add(txns, "10.00", TransactionType.expense, "Food", date(2023, 12, 31))
    add(txns, "20.00", TransactionType.expense, "Food", date(2024, 1, 1))

    summary = MetricsService(session, alice.id).summary(Period(start=date(2024, 1, 1)))

    assert summary["totalExpenses"] == Decimal("20.00")
    assert summary["period"] == {"startDate": "2024-01-01", "endDate": "All Time"}


def test_totals_are_computed_from_integer_cents() -> None:
    session = make_session()
    alice = make_user(session, "alice")
    misc = CategoryService(session, alice.id).resolve_or_create("Misc")
    session.add_all(
        Transaction(
            user_id=alice.id,
            date=date(2024, 5, 1),
            type=TransactionType.expense,
            amount_cents=10,
            category_id=misc.id,
        )
        for _ in range(10)
    )
    session.commit()

    income, expenses = MetricsService(session, alice.id).totals(Period())
    summary = MetricsService(session, alice.id).summary()

    assert (income, expenses) == (0, 100)
    assert summary["totalExpenses"] == Decimal("1.00")
    assert summary["balance"] == Decimal("-1.00")


@pytest.mark.parametrize(
    "start,end",
    [("2024-13-01", None), ("2024-03-10", "2024-03-01"), ("yesterday", "2024-01-01")],
)
def test_invalid_periods_are_rejected(start, end) -> None:
    with pytest.raises(InvalidInput):
        resolve_period(start, end)
