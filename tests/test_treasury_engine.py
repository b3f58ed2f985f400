"""
tests/test_treasury_engine.py — Ledger Math
============================================
"""

from __future__ import annotations

from datetime import UTC, date, datetime
from types import SimpleNamespace

from inrecord.engine.treasury import (
    compute_balance,
    format_currency,
    running_balance,
    summarize,
    transaction_volume,
    truncate_wallet,
    validate_transaction,
)


def _tx(tx_type, amount, *, day=date(2025, 1, 10), currency="ETH", contributor=None, recipient=None):
    return SimpleNamespace(
        transaction_type=tx_type,
        amount=amount,
        currency=currency,
        contributor_wallet=contributor,
        recipient_wallet=recipient,
        created_at=datetime(day.year, day.month, day.day, 12, tzinfo=UTC),
    )


class TestValidation:
    def test_valid_deposit(self):
        assert validate_transaction({
            "transaction_type": "deposit",
            "amount": 5,
            "created_by": "admin",
            "contributor_wallet": "0xabc",
        }) == []

    def test_collects_every_problem(self):
        errors = validate_transaction({"transaction_type": "proposal_funding", "amount": 0})
        assert "Amount must be greater than 0" in errors
        assert "Created by is required" in errors
        assert "Recipient wallet is required for outflow transactions" in errors
        assert "Proposal ID is required for proposal funding transactions" in errors

    def test_unknown_type(self):
        errors = validate_transaction({"transaction_type": "airdrop", "amount": 1, "created_by": "a"})
        assert errors == ["Unknown transaction type: airdrop"]

    def test_inflow_needs_contributor(self):
        errors = validate_transaction({"transaction_type": "revenue", "amount": 1, "created_by": "a"})
        assert errors == ["Contributor wallet is required for inflow transactions"]


class TestBalances:
    def test_inflows_minus_outflows(self):
        txs = [
            _tx("deposit", 10),
            _tx("revenue", 5),
            _tx("grant", 3),
            _tx("expense", 1.5),
            _tx("deposit", 100, currency="USDC"),
        ]
        assert compute_balance(txs) == {"ETH": 10.5, "USDC": 100.0}

    def test_empty_ledger(self):
        assert compute_balance([]) == {}

    def test_summary(self):
        summary = summarize([
            _tx("deposit", 10, contributor="0x1"),
            _tx("deposit", 5, contributor="0x1", day=date(2025, 1, 12)),
            _tx("withdrawal", 4, recipient="0x2"),
        ])
        assert summary.total_inflow == 15
        assert summary.total_outflow == 4
        assert summary.current_balance == 11
        assert summary.unique_contributors == 1
        assert summary.unique_recipients == 1
        assert summary.total_transactions == 3
        assert summary.to_dict()["last_transaction_date"].startswith("2025-01-12")

    def test_summary_is_per_currency(self):
        txs = [
            _tx("deposit", 10, contributor="0x1"),
            _tx("proposal_funding", 400, currency="USD", recipient="0x2"),
        ]
        eth = summarize(txs)
        assert eth.currency == "ETH"
        assert eth.current_balance == 10
        assert eth.total_outflow == 0
        assert eth.total_transactions == 1
        usd = summarize(txs, "USD")
        assert usd.current_balance == -400
        assert usd.to_dict()["currency"] == "USD"


class TestSeries:
    def test_running_balance_includes_opening(self):
        txs = [
            _tx("deposit", 100, day=date(2024, 12, 1)),
            _tx("withdrawal", 30, day=date(2025, 1, 9)),
            _tx("deposit", 10, day=date(2025, 1, 10)),
        ]
        points = running_balance(txs, days=3, today=date(2025, 1, 10))
        assert [p["date"] for p in points] == ["2025-01-08", "2025-01-09", "2025-01-10"]
        assert [p["balance"] for p in points] == [100, 70, 80]

    def test_series_ignore_other_currencies(self):
        txs = [
            _tx("deposit", 10, day=date(2025, 1, 9)),
            _tx("proposal_funding", 400, day=date(2025, 1, 10), currency="USD"),
        ]
        points = running_balance(txs, days=2, today=date(2025, 1, 10))
        assert [p["balance"] for p in points] == [10, 10]
        usd = running_balance(txs, days=2, today=date(2025, 1, 10), currency="USD")
        assert usd[-1]["balance"] == -400
        assert transaction_volume(txs) == [{"date": "2025-01-09", "inflow": 10, "outflow": 0, "net": 10}]

    def test_volume_grouped_by_day(self):
        txs = [
            _tx("deposit", 10, day=date(2025, 1, 2)),
            _tx("grant", 4, day=date(2025, 1, 2)),
            _tx("revenue", 1, day=date(2025, 1, 1)),
        ]
        volume = transaction_volume(txs)
        assert volume[0] == {"date": "2025-01-01", "inflow": 1, "outflow": 0, "net": 1}
        assert volume[1] == {"date": "2025-01-02", "inflow": 10, "outflow": 4, "net": 6}


class TestDisplay:
    def test_format_currency(self):
        assert format_currency(1.5) == "1.5000 ETH"
        assert format_currency(2, "USDC", 2) == "2.00 USDC"

    def test_truncate_wallet(self):
        assert truncate_wallet("0x1234567890abcdef1234") == "0x1234...ef1234"
        assert truncate_wallet("0xshort") == "0xshort"
        assert truncate_wallet(None) is None
