"""
Unit tests for currency parsing and commission aggregation.
"""
from decimal import Decimal

import pytest

from app.models.client import Consultant
from app.models.lead import Lead
from app.models.user import User, UserRole
from app.services.commission_service import (
    UNASSIGNED_LABEL,
    aggregate_commissions,
    normalize_rate,
    parse_brl,
    pipeline_stats,
)


def make_consultant(consultant_id: int, name: str, rate: str) -> Consultant:
    return Consultant(
        id=consultant_id,
        user_id=consultant_id,
        commission_rate=rate,
        is_active=True,
        user=User(id=consultant_id, full_name=name, role=UserRole.CONSULTANT),
    )


def make_lead(status: str, value, consultant_id=None) -> Lead:
    return Lead(status=status, estimated_value=value, assigned_consultant_id=consultant_id)


class TestParseBRL:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("1.234,56", 1234.56),
            ("1,234.56", 1234.56),
            ("R$ 300,00", 300.0),
            ("R$1.000", 1000.0),
            ("300", 300.0),
            ("1.234.567,89", 1234567.89),
            (Decimal("99.90"), 99.9),
            (150, 150.0),
        ],
    )
    def test_formats(self, raw, expected):
        assert parse_brl(raw) == pytest.approx(expected)

    @pytest.mark.parametrize("raw", ["garbage", "", None, "R$", "nan", "inf", True])
    def test_never_raises(self, raw):
        assert parse_brl(raw) == 0


class TestNormalizeRate:
    def test_fraction_kept(self):
        assert normalize_rate("0.15") == pytest.approx(0.15)

    def test_percentage_converted(self):
        assert normalize_rate("15") == pytest.approx(0.15)

    def test_invalid_falls_back_to_default(self):
        assert normalize_rate(None) == pytest.approx(0.10)
        assert normalize_rate("abc") == pytest.approx(0.10)


class TestAggregateCommissions:
    def test_average_rate_is_value_weighted(self):
        consultants = [make_consultant(1, "Ana", "0.10"), make_consultant(2, "Bruno", "0.20")]
        leads = [make_lead("finalizado", Decimal("1000"), 1), make_lead("finalizado", Decimal("4000"), 2)]

        summary = aggregate_commissions(leads, consultants)

        assert summary.total_commissions == pytest.approx(900)
        assert summary.total_sales_value == pytest.approx(5000)
        assert summary.average_rate == pytest.approx(0.18)
        assert summary.by_salesperson["1"].commission == pytest.approx(100)
        assert summary.by_salesperson["2"].commission == pytest.approx(800)

    def test_only_finalized_leads_count(self):
        consultants = [make_consultant(1, "Ana", "0.10")]
        leads = [make_lead("finalizado", "1000", 1), make_lead("receita_validada", "5000", 1)]

        summary = aggregate_commissions(leads, consultants)

        assert summary.total_sales_value == pytest.approx(1000)
        assert summary.by_salesperson["1"].leads == 1

    def test_unassigned_uses_default_rate(self):
        summary = aggregate_commissions([make_lead("finalizado", "2.000,00")], [])

        entry = summary.by_salesperson["unassigned"]
        assert entry.name == UNASSIGNED_LABEL
        assert entry.rate == pytest.approx(0.10)
        assert entry.commission == pytest.approx(200)

    def test_percentage_rates_are_normalized(self):
        summary = aggregate_commissions([make_lead("finalizado", 1000, 1)], [make_consultant(1, "Ana", "12")])
        assert summary.total_commissions == pytest.approx(120)

    def test_salesperson_filter(self):
        consultants = [make_consultant(1, "Ana", "0.10"), make_consultant(2, "Bruno", "0.20")]
        leads = [make_lead("finalizado", 1000, 1), make_lead("finalizado", 4000, 2)]

        summary = aggregate_commissions(leads, consultants, salesperson_id=2)

        assert list(summary.by_salesperson) == ["2"]
        assert summary.total_commissions == pytest.approx(800)

    def test_no_sales(self):
        summary = aggregate_commissions([], [])
        assert summary.total_commissions == 0
        assert summary.average_rate == 0


def test_pipeline_stats():
    leads = [
        make_lead("novo", None),
        make_lead("contato_inicial", None),
        make_lead("receita_validada", "500"),
        make_lead("finalizado", "1000"),
    ]
    stats = pipeline_stats(leads)
    assert stats["total"] == 4
    assert stats["novos"] == 1
    assert stats["em_andamento"] == 2
    assert stats["finalizados"] == 1
    assert stats["total_value"] == pytest.approx(1000)
    assert stats["pipeline_value"] == pytest.approx(500)
    assert stats["conversion_rate"] == 25
    assert stats["avg_deal_size"] == pytest.approx(1000)
