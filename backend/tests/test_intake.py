"""
Interaction intake tests: raw logging, duplicate suppression, retries and
status codes. The orchestrator is either a MagicMock or a real one wired to
httpx.MockTransport.
"""

import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from conftest import (
    FakeSupabase,
    make_email,
    make_planner_client,
    make_settings,
    make_workspace,
)
from mailplan.models.inbound_email import EmailHeader
from mailplan.models.interaction import ProcessingOutcome
from mailplan.services.intake import TEST_EMAIL_HEADER, handle_inbound_email, is_test_email
from mailplan.services.orchestrator import EmailOrchestrator


def _fake_orchestrator(outcome: ProcessingOutcome) -> MagicMock:
    orchestrator = MagicMock()
    orchestrator.process_email = AsyncMock(return_value=outcome)
    return orchestrator


class TestHandleInboundEmail:

    @pytest.mark.asyncio
    async def test_new_email_creates_interaction_and_processes(self):
        db = FakeSupabase()
        orchestrator = _fake_orchestrator(ProcessingOutcome(warnings=["ok"]))

        response, status = await handle_inbound_email(
            db, make_workspace(), make_email(), make_settings(), orchestrator
        )

        assert status == 200
        assert response.status == "success"
        interaction = db.rows("email_interactions")[0]
        assert interaction["status"] == "received"
        assert interaction["message_id"] == "msg-001"
        assert interaction["raw_request"] == {"MessageID": "msg-001"}
        assert response.interaction_id == interaction["id"]
        assert len(db.rows("inbound_emails")) == 1
        orchestrator.process_email.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_duplicate_is_not_reprocessed(self):
        db = FakeSupabase({"email_interactions": [
            {"id": "int-1", "user_id": "user-1", "message_id": "msg-001", "status": "processed"},
        ]})
        orchestrator = _fake_orchestrator(ProcessingOutcome())

        response, status = await handle_inbound_email(
            db, make_workspace(), make_email(), make_settings(), orchestrator
        )

        assert status == 200
        assert response.interaction_id == "int-1"
        assert "already received" in response.warnings[0]
        orchestrator.process_email.assert_not_called()

    @pytest.mark.asyncio
    async def test_failed_interaction_is_retried(self):
        db = FakeSupabase({"email_interactions": [
            {"id": "int-1", "user_id": "user-1", "message_id": "msg-001", "status": "failed"},
        ]})
        orchestrator = _fake_orchestrator(ProcessingOutcome())

        _, status = await handle_inbound_email(
            db, make_workspace(), make_email(), make_settings(), orchestrator
        )

        assert status == 200
        assert len(db.rows("email_interactions")) == 1
        assert db.rows("email_interactions")[0]["status"] == "received"
        assert orchestrator.process_email.await_args.args[2] == "int-1"

    @pytest.mark.asyncio
    async def test_test_header_bypasses_duplicate_suppression(self):
        db = FakeSupabase({"email_interactions": [
            {"id": "int-1", "user_id": "user-1", "message_id": "msg-001", "status": "processed"},
        ]})
        orchestrator = _fake_orchestrator(ProcessingOutcome())
        email = make_email(headers=[EmailHeader(name=TEST_EMAIL_HEADER, value="true")])

        _, status = await handle_inbound_email(db, make_workspace(), email, make_settings(), orchestrator)

        assert status == 200
        assert len(db.rows("email_interactions")) == 2
        orchestrator.process_email.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_processing_errors_return_422(self):
        db = FakeSupabase()
        orchestrator = _fake_orchestrator(ProcessingOutcome.failure("Agent lookup failed"))

        response, status = await handle_inbound_email(
            db, make_workspace(), make_email(), make_settings(), orchestrator
        )

        assert status == 422
        assert response.status == "error"
        assert response.errors == ["Agent lookup failed"]

    @pytest.mark.asyncio
    async def test_lookup_failure_returns_500(self):
        db = FakeSupabase()
        db.fail("email_interactions", Exception("db down"), operation="select")
        orchestrator = _fake_orchestrator(ProcessingOutcome())

        response, status = await handle_inbound_email(
            db, make_workspace(), make_email(), make_settings(), orchestrator
        )

        assert status == 500
        assert response.status == "error"
        orchestrator.process_email.assert_not_called()

    @pytest.mark.asyncio
    async def test_raw_log_failure_does_not_block_processing(self):
        db = FakeSupabase()
        db.fail("inbound_emails", Exception("insert denied"))
        orchestrator = _fake_orchestrator(ProcessingOutcome())

        _, status = await handle_inbound_email(
            db, make_workspace(), make_email(), make_settings(), orchestrator
        )

        assert status == 200
        orchestrator.process_email.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_end_to_end_with_real_orchestrator(self):
        db = FakeSupabase({
            "agent_email_mappings": [
                {"user_id": "user-1", "email_address": "support@acme.test", "agent_id": "agent-1"},
            ],
            "agent_tool_mappings": [],
        })
        replies = []

        def handler(request: httpx.Request) -> httpx.Response:
            replies.append(json.loads(request.content))
            return httpx.Response(200, json={"intent": "general"})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            orchestrator = EmailOrchestrator(
                db, make_settings(), planner_client=make_planner_client(), http=http
            )
            response, status = await handle_inbound_email(
                db, make_workspace(), make_email(), make_settings(), orchestrator
            )

        assert status == 200
        assert any("processed 1 of 1 matched agents" in w for w in response.warnings)
        assert replies[0]["agent_id"] == "agent-1"
        assert db.rows("email_interactions")[0]["status"] == "processed"


class TestIsTestEmail:

    @pytest.mark.parametrize("value,expected", [("true", True), ("1", True), ("no", False), ("", False)])
    def test_header_values(self, value, expected):
        email = make_email(headers=[EmailHeader(name="x-mailplan-test", value=value)])
        assert is_test_email(email) is expected

    def test_absent_header(self):
        assert is_test_email(make_email()) is False
