"""Fixed-width payment receipts for posting in a chat channel.

Every line inside the fenced block is exactly 44 columns wide: a box-drawing
border on each side, one space of padding and 40 columns of text.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from farm_ledger.models import PaymentLine, ServiceType

if TYPE_CHECKING:
    from farm_ledger.evaluation import WorkerEvaluation

WIDTH = 44
INNER = WIDTH - 4
MAX_ITEM_LINES = 15

SERVICE_NAMES = {
    ServiceType.PLANTATION: "Plantation",
    ServiceType.ANIMAL_DELIVERY: "Animal delivery",
    ServiceType.COMBINED: "All services",
}


def _row(text: str = "") -> str:
    if len(text) > INNER:
        text = text[: INNER - 3] + "..."
    return f"║ {text.ljust(INNER)} ║"


def _rule(left: str = "╠", right: str = "╣") -> str:
    return left + "═" * (WIDTH - 2) + right


def _money(value: Decimal) -> str:
    return f"${value:,.2f}"


def _item_line(line: PaymentLine) -> str:
    return (
        f"  {line.description}: {line.quantity}x @ {_money(line.unit_price)}"
        f" = {_money(line.amount)}"
    )


def render_receipt(
    receipt_id: str,
    worker_id: str,
    worker_name: str,
    service_type: ServiceType,
    lines: Iterable[PaymentLine],
    total: Decimal,
    timestamp: datetime,
    deductions: Decimal = Decimal("0"),
    rating: WorkerEvaluation | None = None,
) -> str:
    """Render the receipt text, fenced for chat display.

    With a rating, the worker block also shows stars, the overall score and
    the first recommendation.
    """
    lines = list(lines)
    rows = [
        "```",
        _rule("╔", "╗"),
        _row("PAYMENT RECEIPT".center(INNER)),
        _rule(),
        _row(f"Receipt ID: {receipt_id}"),
        _row(f"Date: {timestamp.astimezone(UTC).strftime('%d/%m/%Y %H:%M:%S')} UTC"),
        _rule(),
        _row("WORKER INFORMATION"),
        _row(f" Name: {worker_name or worker_id}"),
        _row(f" ID: {worker_id}"),
    ]
    if rating is not None:
        stars = "★" * rating.stars + "☆" * (5 - rating.stars)
        rows.append(_row(f" Rating: {stars} ({rating.stars}/5)"))
        rows.append(_row(f" Performance: {rating.overall * 100:.1f}%"))
        if rating.recommendations:
            rows.append(_row(f" Tip: {rating.recommendations[0]}"))
    rows.extend(
        [
            _rule(),
            _row("SERVICE DETAILS"),
            _row(f" Type: {SERVICE_NAMES[service_type]}"),
        ]
    )

    shown = 0
    for service in (ServiceType.PLANTATION, ServiceType.ANIMAL_DELIVERY):
        service_lines = [line for line in lines if line.service == service]
        if not service_lines:
            continue
        rows.append(_row())
        rows.append(_row(f" {SERVICE_NAMES[service]}:"))
        for line in service_lines:
            if shown >= MAX_ITEM_LINES:
                break
            rows.append(_row(_item_line(line)))
            shown += 1
        subtotal = sum((line.amount for line in service_lines), Decimal("0"))
        rows.append(_row(f"  Subtotal: {_money(subtotal)}"))
    if shown < len(lines):
        rows.append(_row(f"  ... and {len(lines) - shown} more items"))

    if lines:
        rows.append(_row())
        rows.append(_row(f" Total Items: {sum(line.quantity for line in lines)}"))

    rows.extend(
        [
            _rule(),
            _row("PAYMENT SUMMARY"),
            _row(f" Subtotal: {_money(total + deductions)}"),
        ]
    )
    if deductions > 0:
        rows.append(_row(f" Deductions: -{_money(deductions)}"))
    rows.extend(
        [
            _row(),
            _row(f" TOTAL PAID: {_money(total)}"),
            _rule(),
            _row("Keep this receipt for your records"),
            _rule("╚", "╝"),
            "```",
        ]
    )
    return "\n".join(rows)
