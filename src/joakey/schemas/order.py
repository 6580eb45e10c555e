"""Order summary Pydantic schemas."""

from pydantic import BaseModel, ConfigDict


class OrderSummaryResponse(BaseModel):
    """Checkout summary with payment instructions."""

    jockey_id: str
    jockey_name: str
    jockey_username: str
    game: str
    from_rank: str
    to_rank: str
    price: int
    price_display: str
    va_number: str
    va_holder: str
    payment_window_minutes: int

    model_config = ConfigDict(from_attributes=True)
