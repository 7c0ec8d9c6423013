#!/usr/bin/env python3
"""
Issue an API key for an existing user.

The plaintext key is printed once; only its SHA-256 fingerprint is stored.

Usage:
    # Store a new key for a user
    python3 scripts/generate_api_key.py --user-id 1b9d6bcd-bbfd-4b2d-9b5d-ab8dfbbd4bed

    # Name the key
    python3 scripts/generate_api_key.py --user-id <uuid> --name "Claude Desktop"

    # Print a key and its fingerprint without touching the database
    python3 scripts/generate_api_key.py --dry-run
"""

import argparse
import asyncio
import sys
from uuid import UUID

from mcp_gateway.db.session import close_engines, get_session
from mcp_gateway.exceptions import StoreError
from mcp_gateway.observability import get_logger, setup_logging
from mcp_gateway.services.api_key import APIKeyService
from mcp_gateway.services.credential_store import CredentialStore

logger = get_logger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Issue a gateway API key")
    parser.add_argument("--user-id", type=UUID, help="Owner of the key")
    parser.add_argument("--name", default=None, help="Display name for the key")
    parser.add_argument(
        "--dry-run", action="store_true", help="Generate and print only; store nothing"
    )
    args = parser.parse_args(argv)
    if not args.dry_run and args.user_id is None:
        parser.error("--user-id is required unless --dry-run is given")
    return args


async def issue_key(user_id: UUID, name: str | None) -> int:
    try:
        async with get_session() as session:
            generated = await APIKeyService(CredentialStore(session)).create_api_key(user_id, name)
    except StoreError as e:
        logger.error("api_key_issue_failed", user_id=str(user_id), error=e.message)
        return 1
    finally:
        await close_engines()

    print(f"Key id:  {generated.key_id}")
    print(f"Prefix:  {generated.key_prefix}")
    print(f"API key: {generated.plaintext_key}")
    print("Store this key now. It cannot be shown again.")
    return 0


def main(argv: list[str] | None = None) -> int:
    setup_logging()
    args = parse_args(argv)

    if args.dry_run:
        plaintext, key_hash, prefix = APIKeyService.generate_api_key()
        print(f"Prefix:      {prefix}")
        print(f"API key:     {plaintext}")
        print(f"Fingerprint: {key_hash}")
        return 0

    return asyncio.run(issue_key(args.user_id, args.name))


if __name__ == "__main__":
    sys.exit(main())
