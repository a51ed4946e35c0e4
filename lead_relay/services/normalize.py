

import re
from typing import Any, Dict, Optional

_NON_DIGITS = re.compile(r"\D")


def normalize_phone(value: Any) -> Optional[str]:
    """
    Keep digits and a single leading '+'.

    Returns None when nothing dialable is left. Applying it twice gives
    the same result as applying it once.
    """
    if value is None:
        return None
    text = str(value).strip()
    digits = _NON_DIGITS.sub("", text)
    if not digits:
        return None
    return f"+{digits}" if text.startswith("+") else digits


def clean_email(value: Any) -> Optional[str]:
    """Trim an email address; empty becomes None."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def clean_text(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (dict, list)):
        return None
    text = str(value).strip()
    return text or None


def to_number(value: Any) -> Optional[float]:
    """Parse numbers sent as int, float or formatted string ("1,200,000")."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        cleaned = value.replace(",", "").strip()
        try:
            return float(cleaned)
        except ValueError:
            return None
    return None


def pick(data: Dict[str, Any], *paths: str) -> Any:
    """Return the first non-empty value found at any dotted path."""
    for path in paths:
        node: Any = data
        for key in path.split("."):
            if isinstance(node, dict):
                node = node.get(key)
            else:
                node = None
                break
        if node not in (None, "", [], {}):
            return node
    return None


def build_deal_title(
    name: str,
    listing_title: Optional[str] = None,
    listing_reference: Optional[str] = None,
    channel: Optional[str] = None,
) -> str:
    """Join name | listing title | reference (channel), skipping blanks."""
    title = name
    if listing_title:
        title += f" | {listing_title}"
    if listing_reference:
        title += f" | {listing_reference}"
    if channel:
        title += f" ({channel})"
    return title
