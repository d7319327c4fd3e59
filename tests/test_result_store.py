"""Tests for the session-partitioned approval result store."""

from __future__ import annotations

import pytest

from approval_relay.errors import ValidationError
from approval_relay.identity import generate_approval_id, generate_session_id
from approval_relay.models import ApprovalRequest, Decision
from approval_relay.store.results import ApprovalResultStore
from conftest import FakeClock


def _request(situation: str = "refund order 1042") -> ApprovalRequest:
    return ApprovalRequest(
        situation=situation,
        context="order 1042, $250",
        reason="exceeds auto-refund limit",
        requested_action="issue refund",
    )


def test_record_then_for_session_round_trips_request(results: ApprovalResultStore) -> None:
    session_id = generate_session_id()
    approval_id = generate_approval_id()
    request = _request()
    results.record(session_id, approval_id, Decision(approved=True, response="ok"), request)

    found = results.for_session(session_id)

    assert len(found) == 1
    assert found[0].approval_id == approval_id
    assert found[0].session_id == session_id
    assert found[0].approved is True
    assert found[0].request_details == request


def test_for_session_with_no_results_is_empty(results: ApprovalResultStore) -> None:
    assert results.for_session(generate_session_id()) == []


def test_sessions_are_isolated(results: ApprovalResultStore) -> None:
    first, second = generate_session_id(), generate_session_id()
    results.record(first, generate_approval_id(), Decision(approved=True), _request())
    assert results.for_session(second) == []


def test_for_approval(results: ApprovalResultStore) -> None:
    session_id = generate_session_id()
    approval_id = generate_approval_id()
    results.record(session_id, approval_id, Decision(approved=False, response="no"), _request())
    found = results.for_approval(session_id, approval_id)
    assert found is not None
    assert found.response == "no"
    assert results.for_approval(session_id, generate_approval_id()) is None


def test_second_record_overwrites(results: ApprovalResultStore, clock: FakeClock) -> None:
    session_id = generate_session_id()
    approval_id = generate_approval_id()
    results.record(session_id, approval_id, Decision(approved=True, response="first"), _request())
    clock.advance(1)
    results.record(session_id, approval_id, Decision(approved=False, response="second"), _request())

    found = results.for_session(session_id)

    assert len(found) == 1
    assert found[0].response == "second"


def test_results_expire_after_a_day(results: ApprovalResultStore, clock: FakeClock) -> None:
    session_id = generate_session_id()
    results.record(session_id, generate_approval_id(), Decision(approved=True), _request())
    clock.advance(24 * 3600 + 1)
    assert results.for_session(session_id) == []


def test_delete(results: ApprovalResultStore) -> None:
    session_id = generate_session_id()
    approval_id = generate_approval_id()
    results.record(session_id, approval_id, Decision(approved=True), _request())
    assert results.delete(session_id, approval_id) is True
    assert results.for_approval(session_id, approval_id) is None


def test_malformed_session_id_rejected(results: ApprovalResultStore) -> None:
    with pytest.raises(ValidationError):
        results.for_session("abc")
    with pytest.raises(ValidationError):
        results.record("abc", generate_approval_id(), Decision(approved=True), _request())


def test_on_disk_layout_is_namespaced_by_session(results: ApprovalResultStore) -> None:
    session_id = generate_session_id()
    approval_id = generate_approval_id()
    results.record(session_id, approval_id, Decision(approved=True), _request())
    path = results.store.root / session_id / f"{approval_id}.json"
    assert path.is_file()
    assert '"requestDetails"' in path.read_text(encoding="utf-8")
