"""
Sender authenticity checks derived from the inbound provider's spam headers.

Postmark runs SpamAssassin on every inbound message and reports the result in
two headers:

  X-Spam-Status   "Yes, score=..." / "No, score=..."
  X-Spam-Tests    comma-separated rule names, e.g.
                  "DKIM_SIGNED,DKIM_VALID,DKIM_VALID_AU,SPF_PASS"

A sender is verified only when every signal passes. Missing headers fail.
"""

import logging
from typing import Optional, Sequence

from mailplan.models.inbound_email import EmailHeader, find_header

logger = logging.getLogger(__name__)

REQUIRED_SPAM_TESTS = ("DKIM_SIGNED", "DKIM_VALID", "DKIM_VALID_AU", "SPF_PASS")


def _spam_tests(headers: Sequence[EmailHeader]) -> set[str]:
    raw = find_header(headers, "X-Spam-Tests") or ""
    return {token.strip().upper() for token in raw.replace(" ", ",").split(",") if token.strip()}


def is_sender_verified(headers: Sequence[EmailHeader], sender_email: str) -> bool:
    """
    Return True only if the message is not flagged as spam and DKIM is
    signed, valid and aligned with the author domain, and SPF passed.
    """
    if not headers:
        logger.info("Verification failed for %s: no headers on message", sender_email)
        return False

    spam_status = find_header(headers, "X-Spam-Status")
    if spam_status and spam_status.strip().lower().startswith("yes"):
        logger.info("Verification failed for %s: X-Spam-Status is %r", sender_email, spam_status)
        return False

    tests = _spam_tests(headers)
    missing = [name for name in REQUIRED_SPAM_TESTS if name not in tests]
    if missing:
        logger.info(
            "Verification failed for %s: %s not found in X-Spam-Tests",
            sender_email,
            ", ".join(missing),
        )
        return False

    return True


def authentication_summary(headers: Sequence[EmailHeader]) -> dict:
    """
    Summarize the authenticity signals forwarded to the reply service.

    spf_pass is true when Received-SPF reports a pass or SpamAssassin saw
    SPF_PASS. spam_score is None when absent or unparseable.
    """
    tests = _spam_tests(headers)
    received_spf = (find_header(headers, "Received-SPF") or "").lower()

    spam_score: Optional[float] = None
    raw_score = find_header(headers, "X-Spam-Score")
    if raw_score:
        try:
            spam_score = float(raw_score.strip())
        except ValueError:
            spam_score = None

    return {
        "spf_pass": received_spf.startswith("pass") or "SPF_PASS" in tests,
        "dkim_valid": "DKIM_VALID" in tests,
        "dkim_aligned": "DKIM_VALID_AU" in tests,
        "spam_status": find_header(headers, "X-Spam-Status"),
        "spam_score": spam_score,
    }
