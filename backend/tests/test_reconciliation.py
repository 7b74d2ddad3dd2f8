"""
Financial reconciliation tests: review queue, period closings, dashboard.
"""

from datetime import date

import pytest

from backoffice.errors import ConflictError, NotFoundError, ValidationError
from backoffice.models import FinancialClosing


def _approved_session(services, branch, opening=10000, entries=(("in", 5000), ("out", 2000)), declared=None):
    session = services.cash.open_session(branch.id, operator_id=1, opening_amount_cents=opening)
    for entry_type, amount in entries:
        services.cash.create_entry(branch.id, entry_type, amount, f"{entry_type} movement", payment_method="cash")
    services.cash.close_session(session.id, operator_id=1, declared_amount_cents=declared)
    services.cash.approve_session(session.id, reviewer_id=9)
    return session


class TestReviewQueue:
    def test_list_pending_oldest_close_first(self, services, branch, other_branch, clock):
        first = services.cash.open_session(branch.id, operator_id=1, opening_amount_cents=0)
        second = services.cash.open_session(other_branch.id, operator_id=1, opening_amount_cents=0)
        services.cash.close_session(second.id, operator_id=1)
        clock.advance(hours=1)
        services.cash.close_session(first.id, operator_id=1)

        result = services.reconciliation.list_pending()
        assert [s["id"] for s in result["items"]] == [second.id, first.id]

        only_branch = services.reconciliation.list_pending(branch_id=branch.id)
        assert [s["id"] for s in only_branch["items"]] == [first.id]

    def test_list_pending_date_filter(self, services, branch, clock):
        session = services.cash.open_session(branch.id, operator_id=1, opening_amount_cents=0)
        services.cash.close_session(session.id, operator_id=1)

        assert services.reconciliation.list_pending(start_date="2026-03-10", end_date="2026-03-10")["count"] == 1
        assert services.reconciliation.list_pending(start_date="2026-03-11")["count"] == 0

    def test_review_detail_recomputes_from_entries(self, services, branch):
        session = services.cash.open_session(branch.id, operator_id=1, opening_amount_cents=10000)
        services.cash.create_entry(branch.id, "in", 5000, "sale", payment_method="pix")
        services.cash.create_entry(branch.id, "out", 2000, "supplies", payment_method="cash")
        services.cash.close_session(session.id, operator_id=1, declared_amount_cents=12500)

        detail = services.reconciliation.review_detail(session.id)

        assert detail["session"]["status"] == "pending_approval"
        assert len(detail["entries"]) == 2
        assert detail["recomputation"] == {
            "total_in_cents": 5000,
            "total_out_cents": 2000,
            "recomputed_balance_cents": 13000,
            "difference_vs_declared_cents": -500,
            "by_payment_method": {"pix": 5000, "cash": 2000},
        }

    def test_review_detail_unknown_session(self, services):
        with pytest.raises(NotFoundError):
            services.reconciliation.review_detail(999)


class TestFinancialClosing:
    def test_generate_consolidates_period(self, services, branch, clock):
        _approved_session(services, branch)

        services.accounts.create_payable("Rent", 3000, "2026-03-12", branch_id=branch.id)
        rent = services.accounts.list_payables()["items"][0]
        services.accounts.settle_payable(rent["id"])
        services.accounts.create_payable("Electricity", 700, "2026-03-20", branch_id=branch.id)

        receivable = services.accounts.create_receivable("Consignment", 1500, "2026-03-15", branch_id=branch.id)
        services.accounts.settle_receivable(receivable.id, amount_cents=1400)

        result = services.reconciliation.generate_closing("2026-03-01", "2026-03-31", user_id=9)

        closing = result["closing"]
        assert closing["revenue_cents"] == 5000 + 1400
        assert closing["expense_cents"] == 2000 + 3000
        assert closing["result_cents"] == 1400
        assert closing["summary"]["sessions"] == {
            "count": 1, "total_in_cents": 5000, "total_out_cents": 2000, "balance_cents": 13000,
        }
        assert closing["summary"]["payables"] == {"count": 1, "total_paid_cents": 3000}
        assert closing["summary"]["receivables"] == {"count": 1, "total_received_cents": 1400}
        assert closing["summary"]["open"] == {"payables_cents": 700, "receivables_cents": 0}
        assert len(result["details"]["sessions"]) == 1
        assert result["details"]["summary"]["result_cents"] == 1400

    def test_pending_sessions_are_excluded(self, services, branch):
        session = services.cash.open_session(branch.id, operator_id=1, opening_amount_cents=0)
        services.cash.create_entry(branch.id, "in", 9999, "sale")
        services.cash.close_session(session.id, operator_id=1)

        result = services.reconciliation.generate_closing("2026-03-01", "2026-03-31")

        assert result["closing"]["revenue_cents"] == 0
        assert result["closing"]["summary"]["sessions"]["count"] == 0

    def test_branch_filter(self, services, branch, other_branch):
        _approved_session(services, branch)
        _approved_session(services, other_branch, entries=(("in", 800),))

        result = services.reconciliation.generate_closing("2026-03-01", "2026-03-31", branch_ids=[other_branch.id])

        assert result["closing"]["branch_ids"] == [other_branch.id]
        assert result["closing"]["revenue_cents"] == 800

    def test_duplicate_period_conflicts_until_cancelled(self, services, db_session, branch):
        first = services.reconciliation.generate_closing("2026-03-01", "2026-03-31")

        with pytest.raises(ConflictError):
            services.reconciliation.generate_closing("2026-03-01", "2026-03-31")

        cancelled = services.reconciliation.cancel_closing(first["closing"]["id"], user_id=9, reason="late invoice")
        assert cancelled.is_cancelled is True
        assert cancelled.cancel_reason == "late invoice"

        second = services.reconciliation.generate_closing("2026-03-01", "2026-03-31")
        assert second["closing"]["id"] != first["closing"]["id"]
        assert db_session.query(FinancialClosing).count() == 2

    def test_overlapping_but_different_period_is_allowed(self, services):
        services.reconciliation.generate_closing("2026-03-01", "2026-03-31")
        other = services.reconciliation.generate_closing("2026-03-01", "2026-03-15")
        assert other["closing"]["end_date"] == "2026-03-15"

    @pytest.mark.parametrize("start,end,branch_ids", [
        (None, "2026-03-31", None),
        ("2026-03-31", "2026-03-01", None),
        ("2026-03-01", "2026-03-31", "1,2"),
        ("garbage", "2026-03-31", None),
    ])
    def test_generate_validation(self, services, start, end, branch_ids):
        with pytest.raises(ValidationError):
            services.reconciliation.generate_closing(start, end, branch_ids=branch_ids)

    def test_cancel_twice_conflicts(self, services):
        closing = services.reconciliation.generate_closing("2026-03-01", "2026-03-31")["closing"]
        services.reconciliation.cancel_closing(closing["id"], user_id=9, reason="redo")
        with pytest.raises(ConflictError):
            services.reconciliation.cancel_closing(closing["id"], user_id=9, reason="redo")

    def test_cancel_requires_reason(self, services):
        closing = services.reconciliation.generate_closing("2026-03-01", "2026-03-31")["closing"]
        with pytest.raises(ValidationError):
            services.reconciliation.cancel_closing(closing["id"], user_id=9, reason="")

    def test_list_and_get(self, services):
        a = services.reconciliation.generate_closing("2026-02-01", "2026-02-28")["closing"]
        b = services.reconciliation.generate_closing("2026-03-01", "2026-03-31")["closing"]

        listed = services.reconciliation.list_closings()
        assert {c["id"] for c in listed["items"]} == {a["id"], b["id"]}
        assert services.reconciliation.get_closing(a["id"]).start_date == date(2026, 2, 1)

        with pytest.raises(NotFoundError):
            services.reconciliation.get_closing(999)


class TestDashboard:
    def test_dashboard_counts(self, services, branch, other_branch):
        pending = services.cash.open_session(branch.id, operator_id=1, opening_amount_cents=0)
        services.cash.close_session(pending.id, operator_id=1)
        services.cash.open_session(branch.id, operator_id=1, opening_amount_cents=0)
        services.cash.open_session(other_branch.id, operator_id=1, opening_amount_cents=0)

        services.accounts.create_payable("Soon", 1000, "2026-03-12")
        services.accounts.create_payable("Later", 5000, "2026-04-30")
        services.accounts.create_payable("Late", 300, "2026-03-01")
        services.accounts.create_receivable("Owed", 2500, "2026-03-20")

        data = services.reconciliation.dashboard(due_soon_days=7)

        assert data["today"] == "2026-03-10"
        assert data["sessions"]["open"] == 2
        assert data["sessions"]["pending_approval"] == 1
        downtown = [row for row in data["sessions"]["by_branch_today"] if row["branch_id"] == branch.id]
        assert {row["status"]: row["count"] for row in downtown} == {"open": 1, "pending_approval": 1}
        assert data["payables"]["due_soon"] == {"count": 1, "total_cents": 1000}
        assert data["payables"]["overdue"] == {"count": 1, "total_cents": 300}
        assert data["receivables"]["pending"] == {"count": 1, "total_cents": 2500}
