"""Order summary shown to a buyer before paying for a boosting job."""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from sqlalchemy.orm import Session

from joakey.core.settings import settings
from joakey.models import ROLE_JOCKEY
from joakey.repositories.chat_repo import ChatRepository

__all__ = ["OrderSummary", "build_order_summary", "format_rupiah"]


@dataclass(frozen=True)
class OrderSummary:
    """Everything the checkout page needs to display."""

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


def format_rupiah(amount: int) -> str:
    """Format an amount as ``Rp`` with dot thousands separators."""
    return "Rp" + f"{amount:,}".replace(",", ".")


def _parse_price(raw: str | int) -> int:
    try:
        value = Decimal(str(raw).strip())
    except InvalidOperation as err:
        raise ValueError("Price must be a number") from err
    if not value.is_finite():
        raise ValueError("Price must be a finite number")
    if value <= 0 or value != value.to_integral_value():
        raise ValueError("Price must be a positive whole amount")
    return int(value)


def build_order_summary(
    db: Session,
    *,
    jockey_id: str,
    game: str,
    from_rank: str,
    to_rank: str,
    price: str | int,
) -> OrderSummary:
    """Validate the order fields and assemble the payment summary.

    Raises:
        ValueError: If a field is missing or the price is not a positive amount.
        LookupError: If the jockey does not exist or is not a jockey.
    """
    fields = {"jockey_id": jockey_id, "game": game, "from_rank": from_rank, "to_rank": to_rank}
    missing = [name for name, value in fields.items() if not str(value or "").strip()]
    if missing:
        raise ValueError(f"Missing order fields: {', '.join(missing)}")
    amount = _parse_price(price)

    jockey = ChatRepository(db).get_profile(jockey_id)
    if jockey is None or jockey.role != ROLE_JOCKEY:
        raise LookupError("Jockey not found")

    return OrderSummary(
        jockey_id=jockey.id,
        jockey_name=jockey.name,
        jockey_username=jockey.username,
        game=game.strip(),
        from_rank=from_rank.strip(),
        to_rank=to_rank.strip(),
        price=amount,
        price_display=format_rupiah(amount),
        va_number=settings.payment_va_number,
        va_holder=settings.payment_va_holder,
        payment_window_minutes=settings.payment_window_minutes,
    )
