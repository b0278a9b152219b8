#!/usr/bin/env python3
"""
Dev helper: send a test inbound-email webhook to the local Mailplan backend.

Builds a Postmark-format inbound payload whose spam headers pass sender
verification, and POST-s it to /api/webhooks/inbound/{webhook_api_key}.

Usage
-----
# Basic, targeting localhost:8000
python scripts/send_test_email.py --key <webhook_api_key>

# Custom sender, recipient and body
python scripts/send_test_email.py --from alice@example.com \\
    --to support@acme.test --body "Where is my order #1042?"

# Simulate a spoofed sender (fails DKIM/SPF checks)
python scripts/send_test_email.py --unverified

# Mark as a test email so the same message id can be sent repeatedly
python scripts/send_test_email.py --test-header

Environment / .env
------------------
MAILPLAN_WEBHOOK_API_KEY   Workspace webhook key. Overridden by --key.
"""

import argparse
import json
import os
import sys
import textwrap
import uuid
from pathlib import Path

import httpx
from dotenv import load_dotenv

PASSING_SPAM_TESTS = "DKIM_SIGNED,DKIM_VALID,DKIM_VALID_AU,SPF_PASS,HTML_MESSAGE"
FAILING_SPAM_TESTS = "HTML_MESSAGE,SPF_FAIL"


# ---------------------------------------------------------------------------
# Payload builder
# ---------------------------------------------------------------------------

def build_postmark_payload(
    from_email: str,
    from_name: str,
    to_address: str,
    subject: str,
    body: str,
    message_id: str,
    verified: bool = True,
    test_header: bool = False,
) -> dict:
    """
    Build a Postmark inbound webhook payload (PascalCase keys).

    Postmark inbound format:
      MessageID, From, FromName, FromFull, To, ToFull, Subject,
      TextBody, HtmlBody, StrippedTextReply, Headers[] - {Name, Value}
    """
    headers = [
        {"Name": "X-Spam-Status", "Value": "No" if verified else "Yes"},
        {"Name": "X-Spam-Score", "Value": "-0.1" if verified else "6.2"},
        {"Name": "X-Spam-Tests", "Value": PASSING_SPAM_TESTS if verified else FAILING_SPAM_TESTS},
        {
            "Name": "Received-SPF",
            "Value": "Pass (sender SPF authorized)" if verified else "Fail (sender not authorized)",
        },
    ]
    if test_header:
        headers.append({"Name": "X-Mailplan-Test", "Value": "true"})

    return {
        "MessageID": message_id,
        "From": from_email,
        "FromName": from_name,
        "FromFull": {"Email": from_email, "Name": from_name},
        "To": to_address,
        "ToFull": [{"Email": to_address, "Name": ""}],
        "CcFull": [],
        "BccFull": [],
        "Subject": subject,
        "TextBody": body,
        "HtmlBody": f"<p>{body}</p>",
        "StrippedTextReply": body,
        "Headers": headers,
    }


# ---------------------------------------------------------------------------
# Pretty printer
# ---------------------------------------------------------------------------

def _print_response(response: httpx.Response) -> None:
    status = response.status_code
    symbol = "OK" if status == 200 else "FAIL"
    print(f"\n[{symbol}] HTTP {status}")
    try:
        print(json.dumps(response.json(), indent=2))
    except ValueError:
        print(response.text)


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

def main() -> int:
    project_root = Path(__file__).resolve().parent.parent
    load_dotenv(project_root / ".env")
    load_dotenv(project_root / "backend" / ".env")

    parser = argparse.ArgumentParser(
        prog="send_test_email.py",
        description=textwrap.dedent("""\
            Send a test inbound-email webhook to the Mailplan backend.

            Reads MAILPLAN_WEBHOOK_API_KEY from the environment or a .env file
            in the project root.
        """),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--url", default="http://localhost:8000", help="Backend base URL")
    parser.add_argument("--key", default=None, help="Workspace webhook API key")
    parser.add_argument("--from", dest="from_email", default="customer@example.com")
    parser.add_argument("--from-name", default="Test Customer")
    parser.add_argument("--to", dest="to_address", default="support@example.com")
    parser.add_argument("--subject", default="Question about my order")
    parser.add_argument(
        "--body",
        default="Hi, could you tell me where my latest order is? Thanks!",
    )
    parser.add_argument(
        "--message-id",
        default=None,
        help="Provider message id (default: a random UUID)",
    )
    parser.add_argument(
        "--unverified",
        action="store_true",
        help="Send spam headers that fail sender verification.",
    )
    parser.add_argument(
        "--test-header",
        action="store_true",
        help="Add X-Mailplan-Test so duplicate suppression is bypassed.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the payload JSON without sending it.",
    )

    args = parser.parse_args()

    key = args.key or os.getenv("MAILPLAN_WEBHOOK_API_KEY", "")
    if not key and not args.dry_run:
        print(
            "ERROR: No webhook API key found.\n"
            "Set MAILPLAN_WEBHOOK_API_KEY in your environment or .env file, or pass --key.",
            file=sys.stderr,
        )
        return 1

    payload = build_postmark_payload(
        from_email=args.from_email,
        from_name=args.from_name,
        to_address=args.to_address,
        subject=args.subject,
        body=args.body,
        message_id=args.message_id or str(uuid.uuid4()),
        verified=not args.unverified,
        test_header=args.test_header,
    )

    endpoint = f"{args.url.rstrip('/')}/api/webhooks/inbound/{key or '<key>'}"

    print(f"Endpoint  : {endpoint}")
    print(f"From      : {args.from_email}")
    print(f"To        : {args.to_address}")
    print(f"Subject   : {args.subject}")
    print(f"Verified  : {not args.unverified}")

    if args.dry_run:
        print("\n[DRY RUN] Payload:")
        print(json.dumps(payload, indent=2))
        return 0

    try:
        response = httpx.post(endpoint, json=payload, timeout=120.0)
    except httpx.HTTPError as e:
        print(f"\nERROR: Request failed: {e}", file=sys.stderr)
        return 1

    _print_response(response)
    return 0 if response.status_code == 200 else 1


if __name__ == "__main__":
    sys.exit(main())
