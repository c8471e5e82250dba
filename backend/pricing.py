"""Retail price calculation for priced cards"""

from config import DEFAULT_MARKUP_PERCENT

# Etsy fees: 6.5% transaction + 3% + $0.25 payment processing
MARKETPLACE_FEE_PERCENT = 0.10  # ~10% total
MARKETPLACE_LISTING_FEE = 0.20

# Target profit margins
MARGIN_STRATEGIES = {
    "competitive": 0.30,
    "standard": 0.45,
    "premium": 0.60,
}


def _round_99(price: float, floor: float) -> float:
    """Round to .99, never dropping below floor."""
    rounded = round(price) - 0.01
    if rounded < floor:
        rounded = int(floor) + 0.99
    return round(rounded, 2)


def calculate_retail_price(cost: float, markup_percent: float = DEFAULT_MARKUP_PERCENT) -> float:
    """Fulfillment cost plus a flat markup, rounded to .99."""
    cost = float(cost or 0)
    if cost <= 0:
        return 0.0
    if markup_percent < 0:
        raise ValueError(f"Markup cannot be negative, got {markup_percent}")
    return _round_99(cost * (1 + markup_percent / 100), cost)


def price_for_margin(cost: float, margin: float) -> float:
    """Price that leaves `margin` of revenue after marketplace fees."""
    cost = float(cost or 0)
    if cost <= 0:
        return 0.0
    if not 0 <= margin < 1 - MARKETPLACE_FEE_PERCENT:
        raise ValueError(f"Margin must be between 0 and {1 - MARKETPLACE_FEE_PERCENT:.2f}, got {margin}")

    total_cost = cost + MARKETPLACE_LISTING_FEE
    # price = cost / (1 - margin - fee)
    price = total_cost / (1 - margin - MARKETPLACE_FEE_PERCENT)
    return _round_99(price, total_cost)


def price_for_strategy(cost: float, strategy: str = "standard") -> float:
    return price_for_margin(cost, MARGIN_STRATEGIES.get(strategy, 0.45))


def price_breakdown(cost: float, price: float) -> dict:
    """Profit and margin at a given retail price."""
    cost = float(cost or 0)
    fees = price * MARKETPLACE_FEE_PERCENT + MARKETPLACE_LISTING_FEE if price > 0 else 0
    profit = price - cost - fees
    margin = profit / price if price > 0 else 0
    return {
        "cost": round(cost, 2),
        "retail_price": round(price, 2),
        "marketplace_fees": round(fees, 2),
        "profit": round(profit, 2),
        "margin_percent": round(margin * 100, 1),
    }
