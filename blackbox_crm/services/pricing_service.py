from dataclasses import dataclass

PRICING_CURRENCY = "PKR"
CUSTOM_UNIT_PRICE = 850


@dataclass(frozen=True)
class PricingPlan:
    name: str
    price: int
    description: str
    features: tuple[str, ...]
    popular: bool = False
    currency: str = PRICING_CURRENCY


@dataclass(frozen=True)
class CustomQuote:
    quantity: int
    unit_price: int
    total_price: int
    currency: str = PRICING_CURRENCY


PRICING_PLANS: tuple[PricingPlan, ...] = (
    PricingPlan(
        name="Starter",
        price=15000,
        description="For small businesses getting started.",
        features=(
            "Up to 50 contacts",
            "10 sales pipelines",
            "20 invoices per month",
            "2 user accounts",
            "Basic support",
        ),
    ),
    PricingPlan(
        name="Professional",
        price=35000,
        description="For growing businesses with advanced needs.",
        features=(
            "Up to 500 contacts",
            "50 sales pipelines",
            "Unlimited invoices",
            "5 user accounts",
            "Priority support",
        ),
        popular=True,
    ),
    PricingPlan(
        name="Enterprise",
        price=75000,
        description="For large organizations with complex requirements.",
        features=(
            "Unlimited contacts",
            "Unlimited sales pipelines",
            "Unlimited invoices",
            "Unlimited user accounts",
            "24/7 dedicated support",
        ),
    ),
)


def list_plans() -> tuple[PricingPlan, ...]:
    return PRICING_PLANS


def custom_quote(quantity: int) -> CustomQuote:
    billable = quantity if quantity > 0 else 0
    return CustomQuote(
        quantity=quantity,
        unit_price=CUSTOM_UNIT_PRICE,
        total_price=billable * CUSTOM_UNIT_PRICE,
    )
