"""Tests for job profitability."""

from decimal import Decimal

from fieldops_engines.job_costing import job_profitability
from fieldops_engines.totals import PricedItem, TextItem

ITEMS = (
    PricedItem(name="Sod", qty=Decimal("10"), unit_price=Decimal("20"), unit_cost=Decimal("8")),
    PricedItem(name="Upsell", qty=Decimal("1"), unit_price=Decimal("99"), unit_cost=Decimal("50"), is_optional=True),
    TextItem(description="Notes"),
)


class TestJobProfitability:

    def test_costs_and_margin(self):
        result = job_profitability(
            ITEMS,
            total_value=Decimal("200"),
            labor_entries=[{"hours": "2", "rate": "25"}, {"cost": "10"}],
            expenses=[{"amount": "15"}],
        )

        assert result.revenue == Decimal("200")
        assert result.labor_cost == Decimal("60")
        assert result.expenses_cost == Decimal("15")
        assert result.materials_cost == Decimal("80")
        assert result.total_costs == Decimal("155")
        assert result.profit == Decimal("45")
        assert result.margin_percent == Decimal("22.5")

    def test_revenue_falls_back_to_line_items(self):
        result = job_profitability(ITEMS, total_value=Decimal("0"))

        assert result.revenue == Decimal("200")

    def test_zero_revenue_zero_margin(self):
        result = job_profitability([], labor_entries=[{"cost": "40"}])

        assert result.revenue == Decimal("0")
        assert result.profit == Decimal("-40")
        assert result.margin_percent == Decimal("0")
