from fastapi import APIRouter

from blackbox_crm.core.api_docs import error_responses
from blackbox_crm.schemas.pricing import (
    CustomQuoteIn,
    CustomQuoteOut,
    PricingPlanListOut,
    PricingPlanOut,
)
from blackbox_crm.services.pricing_service import custom_quote, list_plans

router = APIRouter(prefix="/pricing", tags=["pricing"])


@router.get(
    "/plans",
    response_model=PricingPlanListOut,
    summary="Subscription plans",
)
def pricing_plans():
    return PricingPlanListOut(
        items=[
            PricingPlanOut(
                name=plan.name,
                price=plan.price,
                currency=plan.currency,
                description=plan.description,
                features=list(plan.features),
                popular=plan.popular,
            )
            for plan in list_plans()
        ]
    )


@router.post(
    "/custom-quote",
    response_model=CustomQuoteOut,
    summary="Custom plan quote",
    description="Prices a custom plan per unit; non-positive quantities cost nothing.",
    responses=error_responses(422),
)
def pricing_custom_quote(payload: CustomQuoteIn):
    quote = custom_quote(payload.quantity)
    return CustomQuoteOut(
        quantity=quote.quantity,
        unit_price=quote.unit_price,
        total_price=quote.total_price,
        currency=quote.currency,
    )
