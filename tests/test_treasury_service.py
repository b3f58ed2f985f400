"""
tests/test_treasury_service.py — Ledger Persistence & Proposal Funding
=======================================================================
"""

from __future__ import annotations

from datetime import UTC, datetime

import pytest
from conftest import WALLET_A, WALLET_B, add_member, add_proposal
from sqlalchemy import select
from sqlalchemy.orm import Session

from inrecord.database.models import AdminLog, ProposalStatus, TreasuryTransaction
from inrecord.errors import FundingExceededError, InvalidTransitionError
from inrecord.services import dao_service, treasury_service


def _deposit(engine, amount, wallet=WALLET_A, currency="ETH"):
    return treasury_service.record_transaction(
        engine,
        transaction_type="deposit",
        amount=amount,
        currency=currency,
        contributor_wallet=wallet,
        created_by="admin",
    )


class TestRecordTransaction:
    def test_deposit_is_audited(self, db_engine):
        tx = _deposit(db_engine, 12.5)
        assert tx.id
        assert tx.currency == "ETH"
        with Session(db_engine) as session:
            log = session.scalars(select(AdminLog)).one()
        assert log.target_table == "dao_treasury"
        assert log.after_snapshot["amount"] == 12.5

    def test_validation_errors_joined(self, db_engine):
        with pytest.raises(ValueError) as exc:
            treasury_service.record_transaction(
                db_engine, transaction_type="withdrawal", amount=-1, created_by="admin"
            )
        assert "Amount must be greater than 0" in str(exc.value)
        assert "Recipient wallet is required" in str(exc.value)

    def test_unknown_proposal(self, db_engine):
        with pytest.raises(LookupError):
            treasury_service.record_transaction(
                db_engine,
                transaction_type="proposal_funding",
                amount=1,
                created_by="admin",
                recipient_wallet=WALLET_B,
                proposal_id="missing",
            )


class TestFunding:
    def test_partial_then_goal_reached(self, db_engine):
        add_member(db_engine, WALLET_A)
        proposal = add_proposal(
            db_engine, WALLET_A, status=ProposalStatus.APPROVED, funding_goal=1000.0
        )

        first = treasury_service.fund_proposal(db_engine, proposal.id, amount=400, created_by="admin")
        assert first.goal_reached is False
        assert first.proposal.status == ProposalStatus.APPROVED
        assert first.transaction.recipient_wallet == WALLET_A
        assert first.transaction.description == "Funding for proposal: New vocal booth"

        second = treasury_service.fund_proposal(db_engine, proposal.id, amount=600, created_by="admin")
        assert second.goal_reached is True
        assert second.proposal.status == ProposalStatus.FUNDED
        assert second.proposal.current_funding == 1000

        history = treasury_service.get_proposal_funding_history(db_engine, proposal.id)
        assert len(history) == 2

    def test_overshoot_rejected(self, db_engine):
        add_member(db_engine, WALLET_A)
        proposal = add_proposal(db_engine, WALLET_A, status=ProposalStatus.APPROVED, funding_goal=100.0)
        with pytest.raises(FundingExceededError):
            treasury_service.fund_proposal(db_engine, proposal.id, amount=150, created_by="admin")
        with Session(db_engine) as session:
            assert session.scalars(select(TreasuryTransaction)).all() == []

    def test_creator_credited(self, db_engine):
        add_member(db_engine, WALLET_A)
        proposal = add_proposal(db_engine, WALLET_A, status=ProposalStatus.APPROVED, funding_goal=None)
        treasury_service.fund_proposal(db_engine, proposal.id, amount=75, created_by="admin")
        assert dao_service.get_member(db_engine, WALLET_A).total_funding_received == 75

    @pytest.mark.parametrize("status", [ProposalStatus.ACTIVE_VOTING, ProposalStatus.REJECTED])
    def test_only_approved_can_be_funded(self, db_engine, status):
        add_member(db_engine, WALLET_A)
        proposal = add_proposal(db_engine, WALLET_A, status=status)
        with pytest.raises(InvalidTransitionError):
            treasury_service.fund_proposal(db_engine, proposal.id, amount=1, created_by="admin")

    def test_amount_must_be_positive(self, db_engine):
        with pytest.raises(ValueError):
            treasury_service.fund_proposal(db_engine, "any", amount=0, created_by="admin")


class TestReads:
    def test_balance_per_currency(self, db_engine):
        _deposit(db_engine, 10)
        _deposit(db_engine, 50, currency="USDC")
        treasury_service.record_transaction(
            db_engine,
            transaction_type="expense",
            amount=4,
            recipient_wallet=WALLET_B,
            created_by="admin",
        )
        assert treasury_service.get_treasury_balance(db_engine) == {"ETH": 6.0, "USDC": 50.0}

    def test_summary(self, db_engine):
        _deposit(db_engine, 10, WALLET_A)
        _deposit(db_engine, 5, WALLET_B)
        summary = treasury_service.get_treasury_summary(db_engine)
        assert summary.total_inflow == 15
        assert summary.unique_contributors == 2

    def test_series_keep_currencies_apart(self, db_engine):
        add_member(db_engine, WALLET_A)
        proposal = add_proposal(db_engine, WALLET_A, status=ProposalStatus.APPROVED)
        _deposit(db_engine, 10)
        treasury_service.fund_proposal(db_engine, proposal.id, amount=400, created_by="admin")
        today = datetime.now(UTC).date()

        eth_points = treasury_service.get_treasury_balance_history(db_engine, days=2, today=today)
        assert eth_points[-1]["balance"] == 10
        usd_points = treasury_service.get_treasury_balance_history(
            db_engine, days=2, today=today, currency="USD"
        )
        assert usd_points[-1]["balance"] == -400

        eth_volume = treasury_service.get_transaction_volume(db_engine, days=2, today=today)
        assert eth_volume[-1]["outflow"] == 0
        assert eth_volume[-1]["net"] == 10
        usd_volume = treasury_service.get_transaction_volume(
            db_engine, days=2, today=today, currency="USD"
        )
        assert usd_volume[-1]["outflow"] == 400

        assert treasury_service.get_treasury_summary(db_engine).current_balance == 10
        assert treasury_service.get_treasury_summary(db_engine, "USD").total_outflow == 400

    def test_history_page_carries_titles(self, db_engine):
        add_member(db_engine, WALLET_A)
        proposal = add_proposal(db_engine, WALLET_A, status=ProposalStatus.APPROVED)
        _deposit(db_engine, 10)
        treasury_service.fund_proposal(db_engine, proposal.id, amount=100, created_by="admin")

        rows, total = treasury_service.get_treasury_history(db_engine, transaction_type="proposal_funding")
        assert total == 1
        assert rows[0]["proposal_title"] == "New vocal booth"

        rows, total = treasury_service.get_treasury_history(db_engine, limit=1)
        assert total == 2
        assert len(rows) == 1

    def test_top_contributors_ranked(self, db_engine):
        _deposit(db_engine, 1, WALLET_A)
        _deposit(db_engine, 5, WALLET_B)
        _deposit(db_engine, 2, WALLET_A)
        top = treasury_service.get_top_contributors(db_engine)
        assert [c["contributor_wallet"] for c in top] == [WALLET_B, WALLET_A]
        assert top[1]["contribution_count"] == 2

    def test_funding_distribution(self, db_engine):
        add_member(db_engine, WALLET_A)
        grant = add_proposal(
            db_engine, WALLET_A, status=ProposalStatus.APPROVED, proposal_type="Artist Grant"
        )
        gear = add_proposal(db_engine, WALLET_A, status=ProposalStatus.APPROVED)
        treasury_service.fund_proposal(db_engine, grant.id, amount=300, created_by="admin")
        treasury_service.fund_proposal(db_engine, gear.id, amount=100, created_by="admin")

        dist = treasury_service.get_funding_distribution(db_engine)
        assert dist[0]["proposal_type"] == "Artist Grant"
        assert dist[0]["percentage"] == 75.0
        assert dist[1]["percentage"] == 25.0

    def test_balance_history_window(self, db_engine):
        _deposit(db_engine, 3)
        today = datetime.now(UTC).date()
        points = treasury_service.get_treasury_balance_history(db_engine, days=5, today=today)
        assert len(points) == 5
        assert points[-1]["balance"] == 3
