#!/usr/bin/env python3
"""
Store the Acumatica credentials the sync and dispatch jobs use.

Any previously active row is deactivated so exactly one stays active.

Usage:
  python -m scripts.seed_sync_credentials --url https://erp.example.com \
      --username sync --password '...' --company ACME \
      --service-url https://ar-api.example.com --service-token '...'
"""

import argparse
import asyncio
import os

from sqlalchemy import update

from ar_api.database import AsyncSessionLocal
from ar_api.models.sync import AcumaticaSyncCredentials


async def run(args):
    async with AsyncSessionLocal() as db:
        await db.execute(
            update(AcumaticaSyncCredentials)
            .where(AcumaticaSyncCredentials.is_active.is_(True))
            .values(is_active=False)
        )
        creds = AcumaticaSyncCredentials(
            acumatica_url=args.url.rstrip("/"),
            username=args.username,
            password=args.password,
            company=args.company,
            branch=args.branch,
            service_base_url=args.service_url,
            service_token=args.service_token,
            is_active=True,
        )
        db.add(creds)
        await db.commit()
        print(f"Active credentials set for {creds.acumatica_url} (id={creds.id})")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed Acumatica sync credentials")
    parser.add_argument("--url", required=True, help="Acumatica base URL")
    parser.add_argument("--username", required=True)
    parser.add_argument("--password", default=os.getenv("ACUMATICA_PASSWORD"))
    parser.add_argument("--company", default=None)
    parser.add_argument("--branch", default=None)
    parser.add_argument("--service-url", default=None, help="Base URL dispatch posts to")
    parser.add_argument("--service-token", default=os.getenv("SYNC_SERVICE_TOKEN"))
    args = parser.parse_args()
    if not args.password:
        parser.error("--password or ACUMATICA_PASSWORD is required")

    asyncio.run(run(args))
