import json
import logging
from types import SimpleNamespace

from starlette.requests import Request
from starlette.responses import Response

from app.medstock.middleware.observability import build_request_log_payload, log_level_for


def test_build_request_log_payload():
    scope = {
        "type": "http",
        "method": "POST",
        "path": "/medstock/transfers/abc/items/def/approve",
        "headers": [],
        "route": SimpleNamespace(path="/medstock/transfers/{transfer_id}/items/{item_id}/approve"),
    }
    request = Request(scope)
    request.state.trace_id = "trace-1"
    request.state.organization_id = "org-1"
    request.state.department_id = "dept-1"
    request.state.user_id = "user-1"
    request.state.role = "MEMBER"
    request.state.error_code = "INVALID_TRANSITION"
    response = Response(status_code=409)

    payload = build_request_log_payload(
        request=request,
        response=response,
        latency_ms=12.3456,
        db_time_ms=4.5678,
    )

    assert payload["trace_id"] == "trace-1"
    assert payload["organization_id"] == "org-1"
    assert payload["department_id"] == "dept-1"
    assert payload["user_id"] == "user-1"
    assert payload["role"] == "MEMBER"
    assert payload["route"] == "/medstock/transfers/{transfer_id}/items/{item_id}/approve"
    assert payload["method"] == "POST"
    assert payload["status_code"] == 409
    assert payload["error_code"] == "INVALID_TRANSITION"
    assert payload["latency_ms"] == 12.35
    assert payload["db_time_ms"] == 4.57
    assert payload["idempotency_result"] is None


def test_log_level_follows_status():
    assert log_level_for(201) == logging.INFO
    assert log_level_for(409) == logging.WARNING
    assert log_level_for(503) == logging.ERROR


def test_transfer_transitions_are_logged(client, db_session, caplog):
    from app.medstock.services.transfers import TransferWorkflowService
    from tests.medstock_helpers import actor_for, create_organization, create_product, create_user, new_transfer

    organization, pharmacy, ward = create_organization(db_session, suffix="log")
    nurse = create_user(db_session, organization, suffix="nurse", department=ward)
    product = create_product(db_session, organization, code="SAL-5")

    with caplog.at_level(logging.INFO, logger="medstock.transfers"):
        transfer = TransferWorkflowService(db_session).create_transfer(
            actor_for(nurse), new_transfer(ward, pharmacy, [(product, 3)])
        )

    events = [json.loads(record.getMessage()) for record in caplog.records if record.name == "medstock.transfers"]
    assert events[-1]["event"] == "transfer.transition"
    assert events[-1]["action"] == "transfer.created"
    assert events[-1]["transfer_id"] == str(transfer.id)
    assert events[-1]["organization_id"] == str(organization.id)
    assert events[-1]["to_status"] == "PENDING"
