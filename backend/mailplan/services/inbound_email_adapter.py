"""
Inbound email adapter service.

Normalizes provider-specific inbound webhook payloads into a single
provider-agnostic InboundEmail model.

Supported providers:
  - postmark   (default; set EMAIL_PROVIDER=postmark)
  - canonical  (snake_case JSON mirroring InboundEmail; used by test tooling
                and any relay that already normalizes upstream)

Adding a new provider:
  1. Write a normalize_<provider>(payload: dict) -> InboundEmail function.
  2. Register it in _NORMALIZERS.
  3. Set EMAIL_PROVIDER=<provider> in the environment.

Postmark inbound webhook fields used
------------------------------------
  MessageID           str   - provider message id
  From / FromFull     str / {Email, Name}
  FromName            str
  To, Cc, Bcc         str   - comma-separated fallbacks
  ToFull, CcFull, BccFull  list of {Email, Name, MailboxHash}
  Subject, TextBody, HtmlBody, StrippedTextReply  str
  Headers             list of {Name, Value}
"""

from email.utils import getaddresses
from typing import Callable, Optional

from mailplan.models.inbound_email import EmailHeader, InboundEmail


def _split_addresses(raw: Optional[str]) -> list[str]:
    """Parse a comma-separated address header like 'A <a@x.com>, b@y.com'."""
    if not raw:
        return []
    return [addr.strip() for _, addr in getaddresses([raw]) if addr.strip()]


def _full_addresses(entries: Optional[list], fallback: Optional[str]) -> list[str]:
    """Prefer Postmark's structured *Full arrays; fall back to the string header."""
    if entries:
        return [e.get("Email", "").strip() for e in entries if e and e.get("Email")]
    return _split_addresses(fallback)


# ---------------------------------------------------------------------------
# Postmark normalizer
# ---------------------------------------------------------------------------

def normalize_postmark(payload: dict) -> InboundEmail:
    """
    Convert a Postmark inbound webhook payload to InboundEmail.

    Raises ValueError when the payload has no message id or sender.
    """
    message_id = payload.get("MessageID") or ""
    if not isinstance(message_id, str):
        raise ValueError("Postmark MessageID must be a string")
    message_id = message_id.strip()
    if not message_id:
        raise ValueError("Postmark payload is missing MessageID")

    from_full = payload.get("FromFull") or {}
    if not isinstance(from_full, dict):
        raise ValueError("Postmark FromFull must be an object")
    sender_email = (from_full.get("Email") or "").strip()
    if not sender_email:
        parsed = _split_addresses(payload.get("From"))
        sender_email = parsed[0] if parsed else ""
    if not sender_email:
        raise ValueError("Postmark payload is missing a sender address")

    headers = [
        EmailHeader(name=str(h.get("Name", "")), value=str(h.get("Value", "")))
        for h in payload.get("Headers") or []
        if h and h.get("Name")
    ]

    return InboundEmail(
        message_id=message_id,
        sender_email=sender_email,
        sender_name=payload.get("FromName") or from_full.get("Name") or None,
        to=_full_addresses(payload.get("ToFull"), payload.get("To")),
        cc=_full_addresses(payload.get("CcFull"), payload.get("Cc")),
        bcc=_full_addresses(payload.get("BccFull"), payload.get("Bcc")),
        subject=payload.get("Subject"),
        text_body=payload.get("TextBody"),
        html_body=payload.get("HtmlBody"),
        stripped_text_reply=payload.get("StrippedTextReply"),
        headers=headers,
        provider="postmark",
        raw=payload,
    )


# ---------------------------------------------------------------------------
# Canonical normalizer
# ---------------------------------------------------------------------------

def normalize_canonical(payload: dict) -> InboundEmail:
    """
    Convert a snake_case payload whose keys mirror InboundEmail.

    headers may be a list of {name, value} objects or a flat dict.
    Raises ValueError on a missing message id or sender.
    """
    message_id = payload.get("message_id") or ""
    if not isinstance(message_id, str):
        raise ValueError("message_id must be a string")
    message_id = message_id.strip()
    if not message_id:
        raise ValueError("payload is missing message_id")

    sender = _split_addresses(payload.get("sender_email") or payload.get("from"))
    if not sender:
        raise ValueError("payload is missing a sender address")

    raw_headers = payload.get("headers") or []
    if isinstance(raw_headers, dict):
        headers = [EmailHeader(name=k, value=str(v)) for k, v in raw_headers.items()]
    else:
        headers = [
            EmailHeader(name=str(h.get("name", "")), value=str(h.get("value", "")))
            for h in raw_headers
            if h and h.get("name")
        ]

    def _addresses(key: str) -> list[str]:
        value = payload.get(key)
        if isinstance(value, list):
            return [a.strip() for a in value if isinstance(a, str) and a.strip()]
        return _split_addresses(value)

    return InboundEmail(
        message_id=message_id,
        sender_email=sender[0],
        sender_name=payload.get("sender_name"),
        to=_addresses("to"),
        cc=_addresses("cc"),
        bcc=_addresses("bcc"),
        subject=payload.get("subject"),
        text_body=payload.get("text_body"),
        html_body=payload.get("html_body"),
        stripped_text_reply=payload.get("stripped_text_reply"),
        headers=headers,
        provider="canonical",
        raw=payload,
    )


# ---------------------------------------------------------------------------
# Registry and dispatcher
# ---------------------------------------------------------------------------

_NORMALIZERS: dict[str, Callable[[dict], InboundEmail]] = {
    "postmark": normalize_postmark,
    "canonical": normalize_canonical,
}


def normalize_webhook(payload: dict, provider: str | None = None) -> InboundEmail:
    """
    Route to the correct normalizer based on the provider argument.

    Defaults to "postmark". Raises ValueError for unknown provider names and
    for payloads the selected normalizer cannot parse.
    """
    resolved = (provider or "postmark").lower().strip()

    normalizer = _NORMALIZERS.get(resolved)
    if normalizer is None:
        raise ValueError(
            f"Unknown email provider {resolved!r}. "
            f"Supported providers: {sorted(_NORMALIZERS)}"
        )

    if not isinstance(payload, dict):
        raise ValueError("webhook payload must be a JSON object")

    try:
        return normalizer(payload)
    except (TypeError, AttributeError) as e:
        # A field of an unexpected JSON type
        raise ValueError(f"Malformed {resolved} payload: {e}") from e

