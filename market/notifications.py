"""
market/notifications.py -- Transactional e-mail via the Resend HTTP API.

All sends are best-effort: failures are logged and reported as False, never
raised, so a mail outage cannot fail a bid or a sale. When RESEND_API_KEY
is not configured, delivery is disabled and each message is only logged.

User-supplied strings (NFT names, usernames) are HTML-escaped before they
are interpolated into message bodies.
"""

import html
import logging
from typing import Optional

import requests

from core.config import get_settings

logger = logging.getLogger("etheryte.notify")

RESEND_API = "https://api.resend.com/emails"

# Module-level session shared across sends for connection pooling.
_session = requests.Session()
_session.max_redirects = 3


def send_email(to: str, subject: str, body_html: str, api_key: Optional[str] = None) -> bool:
    """Send one message. Returns True only if Resend accepted it."""
    settings = get_settings()
    key = api_key if api_key is not None else settings.resend_api_key
    if not key:
        logger.info("E-mail delivery disabled; skipped %r to %s", subject, to)
        return False
    try:
        resp = _session.post(
            RESEND_API,
            json={"from": settings.email_from, "to": [to], "subject": subject, "html": body_html},
            headers={"Authorization": f"Bearer {key}"},
            timeout=10,
        )
        resp.raise_for_status()
    except requests.RequestException as e:
        logger.warning("E-mail %r to %s failed: %s", subject, to, e)
        return False
    logger.info("E-mail %r sent to %s", subject, to)
    return True


def _link(path: str) -> str:
    return f"{get_settings().app_url.rstrip('/')}{path}"


def send_welcome(email: str, username: str) -> bool:
    name = html.escape(username)
    return send_email(
        email,
        "Welcome to Etheryte",
        f"<h2>Welcome, {name}!</h2>"
        "<p>Your account is ready. Start exploring, collecting, and creating NFTs.</p>"
        f'<p><a href="{_link("/dashboard")}">Open your dashboard</a></p>',
    )


def send_new_bid(email: str, nft_name: str, amount: float, bidder: str, auction_id: int) -> bool:
    return send_email(
        email,
        "New Bid on Your NFT Auction",
        "<h2>New Bid on Your NFT Auction</h2>"
        f'<p>Your NFT "{html.escape(nft_name)}" has received a new bid.</p>'
        f"<p><strong>Bid Amount:</strong> {amount} ETH</p>"
        f"<p><strong>Bidder:</strong> {html.escape(bidder)}</p>"
        f'<p><a href="{_link(f"/auction/{auction_id}")}">View Auction</a></p>',
    )


def send_outbid(email: str, nft_name: str, previous: float, amount: float, auction_id: int) -> bool:
    return send_email(
        email,
        "You have been outbid",
        "<h2>You have been outbid</h2>"
        f'<p>Your bid on "{html.escape(nft_name)}" has been outbid.</p>'
        f"<p><strong>Your Bid:</strong> {previous} ETH</p>"
        f"<p><strong>New Bid:</strong> {amount} ETH</p>"
        f'<p><a href="{_link(f"/auction/{auction_id}")}">View Auction</a></p>',
    )


def send_transaction_completed(email: str, tx_type: str, nft_name: str, amount: float, tx_hash: str) -> bool:
    return send_email(
        email,
        f"Transaction {tx_type} Completed - Etheryte",
        f"<h2>Transaction {html.escape(tx_type)} Completed</h2>"
        f'<p>NFT: "{html.escape(nft_name)}"</p>'
        f"<p><strong>Amount:</strong> {amount} ETH</p>"
        f"<p><strong>Hash:</strong> {html.escape(tx_hash)}</p>",
    )
