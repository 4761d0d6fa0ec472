"""
Gmail API access for the sync engine.

GmailMailbox wraps an authenticated Gmail service behind the small surface
the engine needs (profile, paginated id listing, full message fetch) and
exposes the current token bundle so the engine can persist refreshed
credentials after each call.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from google.auth.exceptions import RefreshError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build

from jobtracker import config
from jobtracker.errors import CredentialMissing
from jobtracker.services.text_cleaner import decode_body_data, html_to_text

logger = logging.getLogger(__name__)

SCOPES = [
    "https://www.googleapis.com/auth/gmail.readonly",
]

TOKEN_URI = "https://oauth2.googleapis.com/token"

# Gmail caps messages.list at 500; 100 keeps each page cheap
PAGE_SIZE = 100

# Multipart trees deeper than this are not walked
MAX_PART_DEPTH = 20


# ============ MESSAGE PARSING ============

def get_header(headers: list, name: str) -> str:
    """Return the first header value whose name matches case-insensitively."""
    wanted = name.lower()
    for h in headers or []:
        if (h.get("name") or "").lower() == wanted:
            return h.get("value") or ""
    return ""


def _part_text(part: dict) -> str:
    data = (part.get("body") or {}).get("data")
    if not data:
        return ""
    text = decode_body_data(data)
    if "html" in (part.get("mimeType") or "").lower():
        return html_to_text(text)
    return text


def extract_message_body(payload: Optional[dict], max_depth: int = MAX_PART_DEPTH) -> str:
    """
    Extract a textual body from a Gmail payload tree.

    Depth-first: a part's sub-parts are tried in order before the part's own
    body, and the first one yielding non-empty text wins. HTML parts are
    converted to plain text. Parts below max_depth are ignored.
    """
    if not payload:
        return ""

    # (part, depth, children_already_pushed)
    stack = [(payload, 0, False)]
    while stack:
        part, depth, expanded = stack.pop()
        if not isinstance(part, dict):
            continue

        children = part.get("parts") or []
        if children and not expanded and depth < max_depth:
            stack.append((part, depth, True))
            for child in reversed(children):
                stack.append((child, depth + 1, False))
            continue

        text = _part_text(part)
        if text.strip():
            return text

    return ""


# ============ CREDENTIALS ============

def _parse_expiry(value) -> Optional[datetime]:
    """google-auth expects a naive UTC datetime."""
    if not value:
        return None
    if isinstance(value, (int, float)):
        # googleapis-style expiry_date in ms
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc).replace(tzinfo=None)
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def credentials_from_bundle(bundle: dict) -> Credentials:
    """Build google-auth credentials from a stored token bundle."""
    creds = Credentials(
        token=bundle.get("token") or bundle.get("access_token"),
        refresh_token=bundle.get("refresh_token"),
        token_uri=bundle.get("token_uri") or TOKEN_URI,
        client_id=bundle.get("client_id") or config.GOOGLE_CLIENT_ID,
        client_secret=bundle.get("client_secret") or config.GOOGLE_CLIENT_SECRET,
        scopes=bundle.get("scopes") or SCOPES,
    )
    creds.expiry = _parse_expiry(bundle.get("expiry") or bundle.get("expiry_date"))
    return creds


def bundle_from_credentials(creds: Credentials) -> dict:
    """The token fields that change when google-auth refreshes."""
    bundle = {"token": creds.token}
    if creds.refresh_token:
        bundle["refresh_token"] = creds.refresh_token
    if creds.expiry:
        bundle["expiry"] = creds.expiry.replace(microsecond=0).isoformat() + "Z"
    return bundle


class GmailMailbox:
    """Paginated Gmail listing/fetch for one owner."""

    def __init__(self, service, credentials: Optional[Credentials] = None):
        self.service = service
        self.credentials = credentials

    def profile_email(self) -> str:
        profile = self.service.users().getProfile(userId="me").execute()
        return (profile.get("emailAddress") or "").lower()

    def list_ids(self, query: str, page_token: Optional[str] = None,
                 page_size: int = PAGE_SIZE) -> tuple[list[str], Optional[str]]:
        """
        List one page of message ids.

        Returns:
            (ids, next_page_token); next_page_token is None on the last page
        """
        params = {"userId": "me", "maxResults": page_size}
        if query:
            params["q"] = query
        if page_token:
            params["pageToken"] = page_token

        result = self.service.users().messages().list(**params).execute()
        ids = [m["id"] for m in result.get("messages", []) if m.get("id")]
        return ids, result.get("nextPageToken") or None

    def get(self, message_id: str) -> dict:
        """Fetch the full message resource (headers, payload tree, labels)."""
        return self.service.users().messages().get(
            userId="me",
            id=message_id,
            format="full"
        ).execute()

    def token_bundle(self) -> Optional[dict]:
        if self.credentials is None:
            return None
        return bundle_from_credentials(self.credentials)


def build_mailbox(owner: str, bundle: dict) -> GmailMailbox:
    """
    Create an authenticated GmailMailbox from a stored token bundle.

    Expired credentials with a refresh token are refreshed up front; the
    engine notices the new token through token_bundle() and persists it.

    Raises:
        CredentialMissing: the bundle has neither an access nor a refresh token,
            or Google rejected the refresh token
    """
    creds = credentials_from_bundle(bundle or {})
    if not creds.token and not creds.refresh_token:
        raise CredentialMissing(owner)

    if not creds.valid and creds.refresh_token:
        logger.info("Refreshing Gmail access token for %s", owner)
        try:
            creds.refresh(Request())
        except RefreshError as e:
            logger.warning("Gmail token refresh rejected for %s: %s", owner, e)
            raise CredentialMissing(owner) from e

    service = build("gmail", "v1", credentials=creds, cache_discovery=False)
    return GmailMailbox(service, creds)
