import asyncio
import os
import sys
from datetime import datetime, timedelta

from sqlalchemy import and_, func, select

sys.path.append(os.getcwd())

from ar_api.database import AsyncSessionLocal
from ar_api.models.invoice import AcumaticaInvoice
from ar_api.models.sync import SyncStatus
from ar_api.models.ticket import CollectionTicket, TicketInvoice


async def main():
    async with AsyncSessionLocal() as db:
        print("Starting AR Data Integrity Check...")
        print("=" * 60)

        # 1. Ticket invoice links pointing at invoices we never synced
        print("\n[1] Checking ticket_invoices for unknown invoices...")
        stmt = (
            select(TicketInvoice.ticket_id, TicketInvoice.invoice_reference_number)
            .outerjoin(
                AcumaticaInvoice,
                AcumaticaInvoice.reference_number == TicketInvoice.invoice_reference_number,
            )
            .where(AcumaticaInvoice.id.is_(None))
        )
        dangling = (await db.execute(stmt)).all()
        if dangling:
            print(f"❌ Found {len(dangling)} links to missing invoices:")
            for ticket_id, ref in dangling[:20]:
                print(f"   - ticket {ticket_id} -> {ref}")
        else:
            print("✅ Every ticket invoice exists.")

        # 2. Red invoices that are already paid off
        print("\n[2] Checking for red invoices with no balance...")
        stmt = select(AcumaticaInvoice.reference_number).where(
            AcumaticaInvoice.color_status == "red", AcumaticaInvoice.balance <= 0
        )
        paid_red = (await db.execute(stmt)).scalars().all()
        if paid_red:
            print(f"⚠️  {len(paid_red)} paid invoices are still red: {paid_red[:20]}")
        else:
            print("✅ No paid invoices flagged red.")

        # 3. Open tickets whose invoices are all settled
        print("\n[3] Checking for open tickets with every invoice paid...")
        unpaid = (
            select(TicketInvoice.ticket_id)
            .join(
                AcumaticaInvoice,
                AcumaticaInvoice.reference_number == TicketInvoice.invoice_reference_number,
            )
            .where(and_(AcumaticaInvoice.status != "Closed", AcumaticaInvoice.balance > 0))
        )
        stmt = (
            select(CollectionTicket.ticket_number)
            .join(TicketInvoice, TicketInvoice.ticket_id == CollectionTicket.id)
            .where(CollectionTicket.status != "closed", CollectionTicket.id.not_in(unpaid))
            .group_by(CollectionTicket.ticket_number)
        )
        stale = (await db.execute(stmt)).scalars().all()
        if stale:
            print(f"⚠️  {len(stale)} tickets should have auto-closed: {stale[:20]}")
        else:
            print("✅ No stale open tickets.")

        # 4. Sync rows stuck in running
        print("\n[4] Checking for sync rows stuck in 'running'...")
        cutoff = datetime.utcnow() - timedelta(hours=1)
        stmt = select(SyncStatus).where(
            SyncStatus.status == "running", SyncStatus.last_sync_started_at < cutoff
        )
        stuck = (await db.execute(stmt)).scalars().all()
        if stuck:
            for row in stuck:
                print(f"❌ {row.entity_type} running since {row.last_sync_started_at}")
        else:
            print("✅ No stuck sync rows.")

        # 5. Duplicate ticket numbers
        print("\n[5] Checking for duplicate ticket numbers...")
        stmt = (
            select(CollectionTicket.ticket_number, func.count(CollectionTicket.id))
            .group_by(CollectionTicket.ticket_number)
            .having(func.count(CollectionTicket.id) > 1)
        )
        dupes = (await db.execute(stmt)).all()
        if dupes:
            print(f"❌ Found duplicate ticket numbers: {dupes}")
        else:
            print("✅ Ticket numbers are unique.")

        print("\n" + "=" * 60)
        print("Integrity Check Complete.")


if __name__ == "__main__":
    asyncio.run(main())
