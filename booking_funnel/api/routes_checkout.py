from fastapi import APIRouter, Depends, status

from booking_funnel.api.dependencies import get_stripe_client
from booking_funnel.domain.checkout.schemas import CheckoutRequest, CheckoutResponse
from booking_funnel.domain.checkout.service import create_deposit_checkout
from booking_funnel.infra.stripe_client import StripeClient

router = APIRouter(tags=["checkout"])


@router.post("/v1/checkout", response_model=CheckoutResponse, status_code=status.HTTP_200_OK)
async def create_checkout(
    request: CheckoutRequest,
    stripe_client: StripeClient = Depends(get_stripe_client),
) -> CheckoutResponse:
    return await create_deposit_checkout(stripe_client, request)
