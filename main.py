#!/usr/bin/env python3
"""
Etheryte -- management commands for the NFT marketplace backend.

Usage:
  python main.py create-user --email admin@etheryte.io --username admin --role ADMIN
  python main.py seed
  python main.py purge-sessions

Environment variables:
  DATABASE_URL  SQLAlchemy URL of the marketplace database (default: sqlite:///etheryte.db)
  DEBUG         "true" auto-generates signing secrets for local use

Run the API itself with:  uvicorn asgi:app --reload
"""

import argparse
import getpass
import logging
import secrets
import sys
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.exc import IntegrityError

from auth.models import User
from auth.roles import ROLES
from auth.sessions import cleanup_expired_sessions
from auth.store import UserStore
from auth.tokens import hash_password
from core.config import get_settings
from market.models import NFT, Auction, Collection, Transaction
from market.store import MarketStore, slugify

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("etheryte.cli")

_DEMO_PASSWORD = "Etheryte123!"  # noqa: S105 # nosec B105 -- local demo data only


def _prompt_password() -> str:
    first = getpass.getpass("Password: ")
    if getpass.getpass("Confirm password: ") != first:
        print("  [!] Passwords do not match.")
        sys.exit(1)
    return first


def create_user(
    store: UserStore,
    email: str,
    username: str,
    password: str,
    role: str = "USER",
) -> Optional[int]:
    """Create a verified account. Returns the new id, or None if it already exists."""
    if len(password) < 8:
        print("  [!] Password must be at least 8 characters.")
        return None
    try:
        user_id = store.create_user(
            User(
                email=email,
                username=username,
                hashed_password=hash_password(password),
                role=role,
                is_verified=True,
            )
        )
    except IntegrityError:
        print(f"  [!] A user with email '{email}' or username '{username}' already exists.")
        return None
    logger.info("Created %s account user_id=%s username=%s", role, user_id, username.lower())
    return user_id


def seed(user_store: UserStore, market: MarketStore) -> None:
    """Populate an empty database with demo accounts, NFTs, an auction and a sale."""
    if user_store.has_users():
        print("  Database already has users; skipping seed.")
        return

    admin_id = create_user(user_store, "admin@etheryte.io", "admin", _DEMO_PASSWORD, role="ADMIN")
    artist_id = create_user(user_store, "artist@etheryte.io", "artist", _DEMO_PASSWORD)
    collector_id = create_user(user_store, "collector@etheryte.io", "collector", _DEMO_PASSWORD)
    create_user(user_store, "moderator@etheryte.io", "moderator", _DEMO_PASSWORD, role="MODERATOR")

    collection_id = market.create_collection(
        Collection(
            name="Genesis Shapes",
            slug=slugify("Genesis Shapes"),
            creator_id=artist_id,
            description="Geometric studies from the first Etheryte drop.",
        )
    )
    nft_ids = []
    for i, (name, category, price) in enumerate(
        [
            ("Cobalt Prism", "Art", 0.8),
            ("Amber Lattice", "Art", 1.25),
            ("Night Signal", "Music", 0.4),
            ("Harbor at Dawn", "Photography", 2.0),
        ],
        start=1,
    ):
        nft_ids.append(
            market.create_nft(
                NFT(
                    name=name,
                    description=f"Edition {i} of the genesis drop.",
                    image=f"https://images.etheryte.io/genesis/{i}.png",
                    price=price,
                    category=category,
                    creator_id=artist_id,
                    owner_id=artist_id,
                    collection_id=collection_id if category == "Art" else None,
                )
            )
        )

    now = datetime.now(timezone.utc)
    market.create_auction(
        Auction(
            nft_id=nft_ids[0],
            starting_price=0.5,
            current_price=0.5,
            reserve_price=1.0,
            start_time=now.isoformat(),
            end_time=(now + timedelta(hours=48)).isoformat(),
        )
    )
    market.place_bid(market.active_auctions_for_nft(nft_ids[0])[0].id, collector_id, 0.6)
    market.create_transaction(
        Transaction(
            nft_id=nft_ids[3],
            user_id=artist_id,
            amount=2.0,
            transaction_hash="0x" + secrets.token_hex(32),
            type="SALE",
        )
    )
    market.ensure_default_settings()
    logger.info("Seeded demo data (admin user_id=%s)", admin_id)
    print(f"  Demo accounts created. Password for all of them: {_DEMO_PASSWORD}")


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="etheryte",
        description="Management commands for the Etheryte marketplace backend.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-user --email admin@etheryte.io --username admin --role ADMIN
  python main.py seed
  python main.py purge-sessions
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    create = sub.add_parser("create-user", help="Create a verified account")
    create.add_argument("--email", required=True, help="Account e-mail address")
    create.add_argument("--username", required=True, help="Account username")
    create.add_argument(
        "--role",
        choices=ROLES,
        default="USER",
        help="Account role (default: USER)",
    )
    create.add_argument(
        "--password",
        default=None,
        help="Password (prompted when omitted; avoid passing it on shared machines)",
    )

    sub.add_parser("seed", help="Populate an empty database with demo data")
    sub.add_parser("purge-sessions", help="Delete expired login sessions")

    args = parser.parse_args()
    if not args.command:
        parser.print_help()
        return

    db_url = get_settings().database_url
    user_store = UserStore(db_url)
    try:
        if args.command == "create-user":
            password = args.password or _prompt_password()
            if create_user(user_store, args.email, args.username, password, role=args.role) is None:
                sys.exit(1)
            print(f"  Created {args.role} account '{args.username.lower()}'.")
        elif args.command == "seed":
            market = MarketStore(db_url)
            try:
                seed(user_store, market)
            finally:
                market.close()
        elif args.command == "purge-sessions":
            removed = cleanup_expired_sessions(user_store)
            print(f"  Removed {removed} expired session(s).")
    finally:
        user_store.close()


if __name__ == "__main__":
    main()
