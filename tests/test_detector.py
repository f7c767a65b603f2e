"""
Tests for the Identity Probe Runner.
"""

import asyncio
import json
import time

import httpx
import pydantic
import pytest

from authz_probe.detector import (
    ProbeParseFailure,
    ProbeRunner,
    extract_id,
    parse_body,
    score_attacker_probe,
    score_unauthenticated_probe,
)
from authz_probe.http_client import HTTPClient
from authz_probe.models import AttackVector, HttpMethod, ProbeTarget, ScanRequest


USER_BODY = json.dumps({"user": {"id": "1001", "email": "a@example.com"}})


class TestAttackerScoring:
    """Tests for the attacker-vector score."""

    def test_identical_bodies_without_id(self):
        """Unauthorized success with identical bodies scores exactly 1.0."""
        body = '{"name": "alice", "email": "alice@example.com"}'

        score, evidence = score_attacker_probe(200, body, 200, body, "2")

        assert score == 1.0
        assert evidence == ["Similarity victim vs attacker: 100.0%"]

    def test_identical_text_bodies(self):
        score, _ = score_attacker_probe(200, "profile of alice", 201, "profile of alice", "2")

        assert score == 1.0

    @pytest.mark.parametrize("status", [401, 403])
    def test_protected_scores_low(self, status):
        """A 401/403 scores 0.05 whatever the body says."""
        score, evidence = score_attacker_probe(200, USER_BODY, status, USER_BODY, "1002")

        assert score == 0.05
        assert evidence == []

    @pytest.mark.parametrize("status", [0, 302, 404, 500])
    def test_other_status_still_checks_leaked_id(self, status):
        """A non-2xx body carrying the victim's id earns only the leak bonus."""
        score, evidence = score_attacker_probe(200, USER_BODY, status, USER_BODY, "1002")

        assert score == pytest.approx(0.15)
        assert evidence == ["Victim id '1001' present in attacker response"]

    @pytest.mark.parametrize("status", [0, 302, 404, 500])
    def test_other_status_without_leak_scores_zero(self, status):
        score, evidence = score_attacker_probe(200, USER_BODY, status, '{"error": "not found"}', "1002")

        assert score == 0.0
        assert evidence == []

    def test_failed_attacker_call_scores_zero(self):
        """A transport failure leaves status 0 and an empty body."""
        score, evidence = score_attacker_probe(200, USER_BODY, 0, "", "1002")

        assert score == 0.0
        assert evidence == []

    def test_failed_baseline_status_scores_zero(self):
        score, evidence = score_attacker_probe(404, USER_BODY, 200, USER_BODY, "1002")

        assert score == 0.0
        assert evidence == []

    def test_leaked_victim_id(self):
        """The victim's id in the attacker body is recorded as evidence."""
        score, evidence = score_attacker_probe(200, USER_BODY, 200, USER_BODY, "1002")

        assert score == 1.0
        assert "Victim id '1001' present in attacker response" in evidence

    def test_own_resource_penalty(self):
        """An attacker seeing their own id loses 0.1 compared to any other id."""
        baseline = '{"id": "1", "a": "b"}'
        attacker = '{"id": "2", "a": "c"}'

        own, _ = score_attacker_probe(200, baseline, 200, attacker, "2")
        other, _ = score_attacker_probe(200, baseline, 200, attacker, "9")

        assert other - own == pytest.approx(0.1)
        assert own < 0.8

    def test_non_json_bodies_skip_refinement(self):
        """Bodies that do not parse only lose the id refinement."""
        score, evidence = score_attacker_probe(200, "id=1001", 200, "id=1001", "1001")

        assert score == 1.0
        assert len(evidence) == 1

    def test_score_is_clamped(self):
        score, _ = score_attacker_probe(200, USER_BODY, 200, USER_BODY, "x")

        assert 0.0 <= score <= 1.0


class TestUnauthenticatedScoring:
    """Tests for the unauthenticated-vector score."""

    def test_identical_bodies(self):
        score, evidence = score_unauthenticated_probe(USER_BODY, USER_BODY)

        assert score == 1.0
        assert evidence == ["Similarity victim vs unauthenticated: 100.0%"]

    def test_dissimilar_bodies_keep_base(self):
        score, _ = score_unauthenticated_probe(USER_BODY, "<html>login</html>")

        assert 0.65 <= score < 0.8


class TestIdExtraction:
    """Tests for the shallow id lookup."""

    @pytest.mark.parametrize("data,expected", [
        ({"id": 5}, "5"),
        ({"id": "abc"}, "abc"),
        ({"ok": True, "user": {"id": "1001"}}, "1001"),
        ([{"name": "x"}, {"id": 3}], "3"),
        ({"a": {"b": {"id": 1}}}, None),
        ({"id": True}, None),
        ({"id": None}, None),
        ({"id": ""}, None),
        ("just a string", None),
        (42, None),
    ])
    def test_extract_id(self, data, expected):
        assert extract_id(data) == expected

    def test_top_level_wins(self):
        assert extract_id({"id": "top", "user": {"id": "nested"}}) == "top"

    def test_parse_failure(self):
        with pytest.raises(ProbeParseFailure):
            parse_body("<html>")


def _request(**overrides) -> ScanRequest:
    payload = {
        "baseUrl": "http://target.test",
        "endpoints": [{"pathTemplate": "/items/{id}", "pathParams": [{"name": "id", "samples": ["1", "2"]}]}],
        "authContexts": {
            "victim": {"headers": {"x-user": "victim"}},
            "attacker": {"headers": {"x-user": "attacker"}},
        },
    }
    payload.update(overrides)
    return ScanRequest.model_validate(payload)


def _target() -> ProbeTarget:
    return ProbeTarget(
        method=HttpMethod.GET,
        path="/items/1",
        url="http://target.test/items/1",
        victim_sample="1",
        attacker_sample="2",
    )


def _probe(handler, request: ScanRequest, timeout_ms: int = 8000):
    async def _run():
        async with HTTPClient(timeout_ms=timeout_ms, transport=httpx.MockTransport(handler)) as client:
            return await ProbeRunner(client, request).probe_endpoint(_target())

    return asyncio.run(_run())


class TestProbeRunner:
    """Tests for the probe sequence against an in-process target."""

    def test_vulnerable_endpoint(self):
        def handler(request):
            return httpx.Response(200, json={"id": "1", "secret": "s3cr3t"})

        findings = _probe(handler, _request())

        assert len(findings) == 1
        finding = findings[0]
        assert finding.attack_vector == AttackVector.ATTACKER_URL_ID
        assert finding.endpoint == "/items/1"
        assert finding.status_victim == 200
        assert finding.status_attacker == 200
        assert finding.confidence == 1.0

    def test_identity_headers_sent(self):
        seen = []

        def handler(request):
            seen.append((request.headers.get("x-user"), request.headers.get("cookie")))
            return httpx.Response(200, text="ok")

        request = _request(authContexts={
            "victim": {"headers": {"x-user": "victim"}, "cookies": {"sid": "v1"}},
            "attacker": {"headers": {"x-user": "attacker"}},
            "unauthenticated": True,
        })
        _probe(handler, request)

        assert seen == [("victim", "sid=v1"), ("attacker", None), (None, None)]

    def test_missing_attacker_sends_no_identity(self):
        seen = []

        def handler(request):
            seen.append(request.headers.get("x-user"))
            return httpx.Response(200, text="ok")

        _probe(handler, _request(authContexts={"victim": {"headers": {"x-user": "victim"}}}))

        assert seen == ["victim", None]

    def test_baseline_failure_abandons_endpoint(self):
        calls = []

        def handler(request):
            calls.append(request.headers.get("x-user"))
            raise httpx.ConnectError("connection refused", request=request)

        request = _request(authContexts={
            "victim": {"headers": {"x-user": "victim"}},
            "unauthenticated": True,
        })

        assert _probe(handler, request) == []
        assert calls == ["victim"]

    def test_baseline_timeout_abandons_endpoint(self):
        async def handler(request):
            await asyncio.sleep(1)
            return httpx.Response(200, text="late")

        assert _probe(handler, _request(), timeout_ms=50) == []

    def test_attacker_failure_is_tolerated(self):
        def handler(request):
            if request.headers.get("x-user") == "attacker":
                raise httpx.ReadError("reset", request=request)
            return httpx.Response(200, json={"id": "1"})

        request = _request(authContexts={
            "victim": {"headers": {"x-user": "victim"}},
            "attacker": {"headers": {"x-user": "attacker"}},
            "unauthenticated": True,
        })
        findings = _probe(handler, request)

        assert [f.attack_vector for f in findings] == [AttackVector.UNAUTHENTICATED]
        assert findings[0].status_attacker == 200

    def test_protected_endpoint(self):
        def handler(request):
            if request.headers.get("x-user") == "victim":
                return httpx.Response(200, json={"id": "1"})
            return httpx.Response(403, json={"error": "forbidden"})

        request = _request(authContexts={
            "victim": {"headers": {"x-user": "victim"}},
            "attacker": {"headers": {"x-user": "attacker"}},
            "unauthenticated": True,
        })

        assert _probe(handler, request) == []

    def test_threshold_is_inclusive(self):
        def handler(request):
            return httpx.Response(200, text="same")

        findings = _probe(handler, _request(speedGateThreshold=1.0))

        assert len(findings) == 1

    def test_findings_are_immutable(self):
        def handler(request):
            return httpx.Response(200, text="same")

        finding = _probe(handler, _request())[0]

        with pytest.raises(pydantic.ValidationError):
            finding.confidence = 0.1

    def test_scoring_does_not_block_event_loop(self, monkeypatch):
        """Other coroutines keep running while a slow comparison is scored."""
        def slow_score(*args):
            time.sleep(0.2)
            return 0.0, []

        monkeypatch.setattr("authz_probe.detector.score_attacker_probe", slow_score)

        def handler(request):
            return httpx.Response(200, text="same")

        ticks = 0

        async def ticker(done):
            nonlocal ticks
            while not done.is_set():
                ticks += 1
                await asyncio.sleep(0.01)

        async def _run():
            done = asyncio.Event()
            async with HTTPClient(timeout_ms=8000, transport=httpx.MockTransport(handler)) as client:
                tick_task = asyncio.create_task(ticker(done))
                findings = await ProbeRunner(client, _request()).probe_endpoint(_target())
                done.set()
                await tick_task
            return findings

        assert asyncio.run(_run()) == []
        assert ticks >= 10
