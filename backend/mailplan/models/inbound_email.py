"""
Provider-agnostic inbound email model.

These models represent a normalized inbound email after provider-specific
fields have been stripped away. The orchestrator and routers work exclusively
with these models; only the adapter layer knows about Postmark field names.
"""

from typing import Any, Optional, Sequence
from pydantic import BaseModel, ConfigDict


class EmailHeader(BaseModel):
    """A single raw MIME header as delivered by the inbound provider."""

    model_config = ConfigDict(frozen=True)

    name: str
    value: str


def find_header(headers: Sequence[EmailHeader], name: str) -> Optional[str]:
    """Case-insensitive lookup of the first header called `name`."""
    wanted = name.lower()
    for header in headers:
        if header.name.lower() == wanted:
            return header.value
    return None


class InboundEmail(BaseModel):
    """
    Normalized inbound email, provider-agnostic and immutable.

    Recipient lists hold bare addresses (no display names). The raw provider
    payload is kept verbatim so it can be stored and forwarded downstream.
    """

    model_config = ConfigDict(frozen=True)

    message_id: str
    sender_email: str
    sender_name: Optional[str] = None
    to: list[str] = []
    cc: list[str] = []
    bcc: list[str] = []
    subject: Optional[str] = None
    text_body: Optional[str] = None
    html_body: Optional[str] = None
    stripped_text_reply: Optional[str] = None
    headers: list[EmailHeader] = []
    provider: str = "postmark"
    raw: dict[str, Any] = {}

    @property
    def body(self) -> str:
        """First non-empty body variant: text, then html, then stripped reply."""
        return self.text_body or self.html_body or self.stripped_text_reply or ""

    @property
    def primary_recipient(self) -> str:
        return self.to[0] if self.to else ""

    def recipient_addresses(self) -> list[str]:
        """
        Lower-cased, de-duplicated union of to/cc/bcc in order of first
        appearance.
        """
        seen: set[str] = set()
        addresses: list[str] = []
        for address in [*self.to, *self.cc, *self.bcc]:
            normalized = address.strip().lower()
            if normalized and normalized not in seen:
                seen.add(normalized)
                addresses.append(normalized)
        return addresses

    def header_value(self, name: str) -> Optional[str]:
        """Case-insensitive lookup of the first header called `name`."""
        return find_header(self.headers, name)

    def headers_dict(self) -> dict[str, str]:
        """Headers as a plain dict; later duplicates overwrite earlier ones."""
        return {h.name: h.value for h in self.headers}
