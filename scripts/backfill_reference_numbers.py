#!/usr/bin/env python3
"""
Rewrite stored invoice references to the canonical six digit form.

Rows written before normalization may hold "1234" instead of "001234", which
breaks joins against acumatica_invoices.reference_number.

Usage:
  python -m scripts.backfill_reference_numbers           # dry-run
  python -m scripts.backfill_reference_numbers --apply   # apply changes
"""

import argparse
import asyncio
from collections import defaultdict

from sqlalchemy import func, select

from ar_api.database import AsyncSessionLocal
from ar_api.models.payment import PaymentInvoiceApplication
from ar_api.models.reminder import InvoiceReminder
from ar_api.models.ticket import TicketInvoice
from ar_api.services.normalization import InvalidReferenceNumber, normalize_reference_number

TARGETS = [
    (TicketInvoice, "invoice_reference_number"),
    (PaymentInvoiceApplication, "invoice_reference_number"),
    (InvoiceReminder, "invoice_reference_number"),
]


async def run(apply: bool):
    summary = defaultdict(int)
    invalid: list[str] = []

    async with AsyncSessionLocal() as db:
        for model, attr in TARGETS:
            column = getattr(model, attr)
            rows = (
                await db.execute(
                    select(model).where(column.isnot(None), func.length(column) != 6)
                )
            ).scalars().all()

            for row in rows:
                raw = getattr(row, attr)
                summary[f"{model.__tablename__}_seen"] += 1
                try:
                    ref = normalize_reference_number(raw)
                except InvalidReferenceNumber:
                    invalid.append(f"{model.__tablename__} {row.id}: {raw!r}")
                    continue
                summary[f"{model.__tablename__}_fixed"] += 1
                if apply:
                    setattr(row, attr, ref)

        if apply:
            await db.commit()

    print("Reference number backfill")
    print(f"  Apply mode: {apply}")
    for model, _ in TARGETS:
        table = model.__tablename__
        print(f"  {table}: {summary[table + '_fixed']} of {summary[table + '_seen']} fixable")

    if invalid:
        print("\nNot numeric (left untouched):")
        for item in invalid:
            print(f"  - {item}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Normalize stored invoice references")
    parser.add_argument("--apply", action="store_true", help="Persist changes")
    args = parser.parse_args()

    asyncio.run(run(apply=args.apply))
