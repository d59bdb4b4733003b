"""Links that open Gmail's web UI (manual fallback when the API send is unavailable)."""

import html as html_module
import re
from urllib.parse import quote, urlencode

from outreach.core.config import settings

GMAIL_COMPOSE_URL = "https://mail.google.com/mail/"
GMAIL_SEARCH_URL = "https://mail.google.com/mail/u/0/#search/"


def html_to_text(content: str) -> str:
    """Convert an HTML body to plain text for the compose window."""
    text = re.sub(r"<(script|style)[^>]*>.*?</\1>", "", content, flags=re.DOTALL | re.I)
    text = re.sub(r"<br\s*/?>|</p>|</div>", "\n", text, flags=re.I)
    text = re.sub(r"<[^>]+>", "", text)
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r"\n{3,}", "\n\n", text).strip()
    return html_module.unescape(text)


def build_compose_url(
    to: str, subject: str = "", body: str = "", cc: str | None = None
) -> str:
    """Gmail compose window prefilled with recipient, cc, subject and body."""
    params = {"view": "cm", "fs": "1", "to": to}
    cc = cc if cc is not None else settings.OUTREACH_DEFAULT_CC
    if cc:
        params["cc"] = cc
    if subject:
        params["su"] = subject
    if body:
        params["body"] = html_to_text(body)
    return f"{GMAIL_COMPOSE_URL}?{urlencode(params, quote_via=quote)}"


def build_thread_search_url(subject: str) -> str:
    """Gmail search for an existing conversation by subject."""
    return f"{GMAIL_SEARCH_URL}{quote(f'subject:({subject})', safe='')}"
