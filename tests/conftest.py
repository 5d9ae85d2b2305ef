import pytest

from foliolens.models import AssetType, RawHolding


def make_fund(
    isin="INF000X",
    invested=0.0,
    current=0.0,
    units=None,
    realized=0.0,
    portfolio_id=1,
    scheme_id=None,
    **extra,
):
    """Build a mutual fund RawHolding with consistent P&L fields."""
    return RawHolding(
        asset_type=AssetType.MUTUAL_FUND,
        isin=isin,
        portfolio_id=portfolio_id,
        total_invested=invested,
        current_value=current,
        realized_profit_loss=realized,
        unrealized_profit_loss=current - invested,
        total_profit_loss=current - invested + realized,
        quantity=units,
        scheme_id=scheme_id,
        **extra,
    )


@pytest.fixture()
def fund_factory():
    return make_fund


@pytest.fixture()
def summary_payload():
    """A V2 summary response mixing snake_case and camelCase records."""
    return {
        "portfolioId": 1,
        "holdings": {
            "mutual_funds": [
                {
                    "isin": "INF204K01UN9",
                    "schemeName": "Nippon India Small Cap Fund",
                    "amc": "Nippon India",
                    "schemeType": "Equity",
                    "folioNumber": "477123/45",
                    "schemeId": 101,
                    "totalInvested": 1000,
                    "currentValue": 1200,
                    "unrealizedProfitLoss": 200,
                    "totalProfitLoss": 200,
                    "currentUnits": 50,
                    "averageNav": 20,
                    "currentNav": 24,
                },
                {
                    "isin": "INF179K01BB8",
                    "scheme_name": "HDFC Flexi Cap Fund",
                    "amc": "HDFC",
                    "folio_number": "1122334",
                    "scheme_id": 102,
                    "total_invested": "500.50",
                    "current_value": 480.25,
                    "realized_profit_loss": None,
                    "total_profit_loss": -20.25,
                    "current_units": 10,
                },
                {"schemeName": "No identity fund", "totalInvested": 10},
            ],
            "stocks": [
                {
                    "symbol": "TCS",
                    "companyName": "Tata Consultancy Services",
                    "exchange": "NSE",
                    "quantity": 4,
                    "averagePrice": 3500,
                    "ltp": 3900,
                    "totalInvested": 14000,
                    "currentValue": 15600,
                },
            ],
            "metals": [
                {
                    "schemeCode": "GOLD_22K",
                    "folioNumber": "METAL_1",
                    "purity": "22K",
                    "currentQuantity": 12.5,
                    "totalInvested": 60000,
                    "currentValue": 75000,
                },
            ],
            "fixed_deposits": [
                {
                    "scheme_code": "FD-001",
                    "bankName": "SBI",
                    "principal": 100000,
                    "interestRate": 7.1,
                    "investmentDate": [2023, 4, 1],
                    "maturityDate": "2026-04-01",
                    "totalInvested": 100000,
                    "currentValue": 110500,
                    "isClosed": False,
                },
            ],
        },
    }
