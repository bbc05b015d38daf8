#!/usr/bin/env python3
"""
Recompute users' storage_used counters from their documents.

Usage:
    python scripts/reconcile_storage.py                 # all users
    python scripts/reconcile_storage.py --user-id <id>  # a single user
"""

import asyncio
import argparse
import sys
from pathlib import Path

# Add parent directory to path to import app modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from app.core.logging_config import setup_logging
from app.database import AsyncSessionLocal, close_db
from app.external.storage_gateway import StorageGateway
from app.services.document_service import DocumentService, format_file_size


async def reconcile(user_id: str = None) -> int:
    """
    Reconcile one user or every user.

    Returns:
        Number of users whose counter was corrected
    """
    # Reconciliation never touches object storage
    service = DocumentService(storage=StorageGateway(client=None))

    async with AsyncSessionLocal() as session:
        if user_id:
            outcome = await service.reconcile_storage_usage(session, user_id)
            drifted = {user_id: outcome} if outcome["drift"] else {}
        else:
            drifted = await service.reconcile_all_storage_usage(session)

    for drifted_user_id, outcome in drifted.items():
        print(
            f"{drifted_user_id}: {format_file_size(outcome['previous'])} -> "
            f"{format_file_size(outcome['actual'])} (drift {outcome['drift']} bytes)"
        )
    return len(drifted)


async def main():
    """Main function."""
    parser = argparse.ArgumentParser(
        description="Recompute storage_used from the documents table"
    )
    parser.add_argument(
        "--user-id",
        default=None,
        help="Only reconcile this user (optional)"
    )

    args = parser.parse_args()

    setup_logging()
    try:
        corrected = await reconcile(args.user_id)
    finally:
        await close_db()

    if corrected:
        print(f"Corrected storage usage for {corrected} user(s)")
    else:
        print("No drift found")


if __name__ == "__main__":
    asyncio.run(main())
