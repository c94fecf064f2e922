from pydantic import BaseModel, ConfigDict


class PricingPlanOut(BaseModel):
    name: str
    price: int
    currency: str
    description: str
    features: list[str]
    popular: bool


class PricingPlanListOut(BaseModel):
    items: list[PricingPlanOut]


class CustomQuoteIn(BaseModel):
    quantity: int

    model_config = ConfigDict(json_schema_extra={"example": {"quantity": 12}})


class CustomQuoteOut(BaseModel):
    quantity: int
    unit_price: int
    total_price: int
    currency: str
