"""
Share text for payment-step links.
"""

from typing import Optional
from urllib.parse import quote

from careena.shortlinks import ShortLinkCache

SHARE_TITLE = "Payment Step - Careena"


def share_text(url: str) -> str:
    return f"Complete your payment step: {url}"


def whatsapp_url(text: str) -> str:
    return f"https://wa.me/?text={quote(text, safe='')}"


def share_payload(url: str, links: Optional[ShortLinkCache] = None) -> dict[str, str]:
    """Title, text and link for a share sheet; uses the short link if it never resolved."""
    target = links.share_target(url) if links is not None else url
    text = share_text(target)
    return {"title": SHARE_TITLE, "text": text, "url": target, "whatsapp": whatsapp_url(text)}
