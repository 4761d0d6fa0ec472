"""
Text helpers for Gmail message bodies.

Handles:
1. base64url body decoding
2. HTML -> plain text conversion
3. Trimming text before it is sent to the classifier
"""

import base64
import binascii
import re

from bs4 import BeautifulSoup

# Maximum body characters sent to the model (1 token ~ 4 chars)
MAX_CHARS = 12000


def decode_body_data(data: str) -> str:
    """
    Decode a Gmail base64url body payload.

    Gmail strips the '=' padding, so it is restored before decoding.
    Undecodable input yields "".
    """
    if not data:
        return ""
    padded = data + "=" * (-len(data) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded)
    except (binascii.Error, ValueError):
        return ""
    return raw.decode("utf-8", errors="ignore")


def html_to_text(raw_html: str) -> str:
    """
    Convert HTML email content to clean plain text.

    Args:
        raw_html: Raw HTML string from email body

    Returns:
        Plain text with normalized whitespace
    """
    if not raw_html:
        return ""

    soup = BeautifulSoup(raw_html, "html.parser")

    # Remove script, style, and head tags
    for tag in soup(['script', 'style', 'head', 'meta', 'link']):
        tag.decompose()

    # Convert links to text with URL
    for a in soup.find_all('a', href=True):
        href = a.get('href', '')
        text = a.get_text(strip=True)
        if href and text and text != href:
            a.replace_with(f"{text} ({href})")
        elif href:
            a.replace_with(href)

    # Convert <br> and </p> to newlines
    for br in soup.find_all('br'):
        br.replace_with('\n')
    for p in soup.find_all('p'):
        p.insert_after('\n')

    text = soup.get_text(separator=' ')

    # Normalize whitespace
    text = re.sub(r'[ \t]+', ' ', text)
    text = re.sub(r' *\n *', '\n', text)
    text = re.sub(r'\n{3,}', '\n\n', text)

    return text.strip()


def trim_for_prompt(text: str, max_chars: int = MAX_CHARS) -> str:
    """Cut text to max_chars, on a line boundary when one is close."""
    if not text or len(text) <= max_chars:
        return text or ""
    cut = text[:max_chars]
    newline = cut.rfind('\n')
    if newline > max_chars * 0.8:
        cut = cut[:newline]
    return cut.rstrip()
