"""Tests for fixed-width payment receipts."""

from decimal import Decimal

from farm_ledger.evaluation import WorkerEvaluation
from farm_ledger.models import PaymentLine, ServiceType
from farm_ledger.receipts import MAX_ITEM_LINES, WIDTH, render_receipt


def _lines(count=1):
    return [
        PaymentLine(
            service=ServiceType.PLANTATION,
            description=f"Crop {i}",
            quantity=50,
            unit_price=Decimal("0.15"),
            amount=Decimal("7.50"),
        )
        for i in range(count)
    ]


def _render(lines, total, **kwargs):
    return render_receipt(
        receipt_id="rcpt-1",
        worker_id="maria",
        worker_name="Maria Silva",
        service_type=ServiceType.PLANTATION,
        lines=lines,
        total=total,
        timestamp=kwargs.pop("timestamp"),
        **kwargs,
    )


def test_every_row_is_fixed_width(base_time):
    receipt = _render(_lines(), Decimal("7.50"), timestamp=base_time)
    rows = receipt.splitlines()

    assert rows[0] == "```" and rows[-1] == "```"
    assert all(len(row) == WIDTH for row in rows[1:-1])
    assert rows[1].startswith("╔") and rows[-2].startswith("╚")


def test_sections_and_totals(base_time):
    receipt = _render(_lines(), Decimal("7.50"), timestamp=base_time)

    assert "PAYMENT RECEIPT" in receipt
    assert "Name: Maria Silva" in receipt
    assert "Crop 0: 50x @ $0.15 = $7.50" in receipt
    assert "Total Items: 50" in receipt
    assert "TOTAL PAID: $7.50" in receipt
    assert "10/05/2024 12:00:00 UTC" in receipt


def test_long_text_is_truncated(base_time):
    lines = [
        PaymentLine(
            service=ServiceType.ANIMAL_DELIVERY,
            description="A very long delivery description that overflows",
            quantity=1,
            unit_price=Decimal("60"),
            amount=Decimal("60"),
        )
    ]

    receipt = _render(lines, Decimal("60"), timestamp=base_time)

    assert "..." in receipt
    assert all(len(row) == WIDTH for row in receipt.splitlines()[1:-1])


def test_item_lines_are_capped(base_time):
    lines = _lines(MAX_ITEM_LINES + 3)

    receipt = _render(lines, Decimal("135.00"), timestamp=base_time)

    assert "... and 3 more items" in receipt
    assert "Crop 15" not in receipt


def test_deductions_shown(base_time):
    receipt = _render(_lines(), Decimal("5.50"), timestamp=base_time, deductions=Decimal("2"))

    assert "Subtotal: $7.50" in receipt
    assert "Deductions: -$2.00" in receipt


def test_rating_block(base_time):
    rating = WorkerEvaluation(
        worker_id="maria",
        evaluated_at=base_time,
        consistency=1.0,
        reliability=0.5,
        efficiency=1.0,
        honesty=0.7,
        recommendations=["Address flagged activities in the last delivery window"],
    )

    receipt = _render(_lines(), Decimal("7.50"), timestamp=base_time, rating=rating)

    assert "Rating: ★★★★☆ (4/5)" in receipt
    assert "Performance: 80.0%" in receipt
    assert " Tip: Address flagged" in receipt
    assert all(len(row) == WIDTH for row in receipt.splitlines()[1:-1])
