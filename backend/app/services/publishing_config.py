"""Fixed Meta publishing rules: objectives per goal, text limits, budget floors."""

GOAL_TO_OBJECTIVE = {
    "leads": {
        "objective": "OUTCOME_LEADS",
        "optimization_goal": "LEAD_GENERATION",
        "billing_event": "IMPRESSIONS",
        "bid_strategy": "LOWEST_COST_WITHOUT_CAP",
    },
    "website-visits": {
        "objective": "OUTCOME_TRAFFIC",
        "optimization_goal": "LINK_CLICKS",
        "billing_event": "LINK_CLICKS",
        "bid_strategy": "LOWEST_COST_WITHOUT_CAP",
    },
    "calls": {
        "objective": "OUTCOME_TRAFFIC",
        "optimization_goal": "LINK_CLICKS",
        "billing_event": "IMPRESSIONS",
        "bid_strategy": "LOWEST_COST_WITHOUT_CAP",
    },
}

DEFAULT_CTA = {
    "leads": "LEARN_MORE",
    "website-visits": "LEARN_MORE",
    "calls": "CALL_NOW",
}
LEAD_FORM_CTA = "SIGN_UP"

# Maximum characters Meta renders without truncation
TEXT_LIMITS = {
    "headline": 40,
    "primary_text": 2200,
    "description": 30,
}

# Minimum daily budget per currency, in Meta billing units (whole yen for JPY)
BUDGET_MINIMUMS = {
    "USD": 100,
    "EUR": 100,
    "GBP": 100,
    "CAD": 100,
    "AUD": 150,
    "JPY": 100,
    "INR": 4000,
    "BRL": 500,
    "MXN": 2000,
}
DEFAULT_BUDGET_MINIMUM = 100

CURRENCY_SYMBOLS = {
    "USD": "$",
    "CAD": "CA$",
    "AUD": "A$",
    "EUR": "€",
    "GBP": "£",
    "JPY": "¥",
    "INR": "₹",
    "BRL": "R$",
    "MXN": "MX$",
}

# Currencies Meta bills in whole units; amounts are not divided by 100
ZERO_DECIMAL_CURRENCIES = {"JPY", "KRW", "CLP", "COP", "HUF", "ISK", "PYG", "TWD", "VND"}

TARGETING_DEFAULTS = {
    "age_min": 18,
    "age_max": 65,
    "location_types": ["home", "recent"],
    "publisher_platforms": ["facebook", "instagram"],
}

TOKEN_EXPIRY_WARNING_DAYS = 7


def budget_minimum(currency: str | None) -> int:
    return BUDGET_MINIMUMS.get((currency or "USD").upper(), DEFAULT_BUDGET_MINIMUM)


def format_money(amount_minor: int, currency: str | None) -> str:
    """Render minor units as a display string, e.g. ``1500, "USD"`` -> ``"$15.00"``.

    Zero-decimal currencies are shown as-is: ``500, "JPY"`` -> ``"¥500"``.
    """
    code = (currency or "USD").upper()
    if code in ZERO_DECIMAL_CURRENCIES:
        amount = f"{amount_minor:,}"
    else:
        amount = f"{amount_minor / 100:,.2f}"
    symbol = CURRENCY_SYMBOLS.get(code)
    if symbol:
        return f"{symbol}{amount}"
    return f"{amount} {code}"
