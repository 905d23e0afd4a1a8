import json
import logging

import pytest
from redis.exceptions import TimeoutError as RedisTimeoutError

from bastion.models.Request import RequestContext
from bastion.models.Security_config import RateLimitConfig, SecurityConfig
from bastion.models.Security_event import EventType, Severity
from bastion.models.Threat import ThreatIntelligenceEntry
from bastion.services.security.middleware import SecurityStage


def _ctx(ip="198.51.100.7", path="/api/items", **kwargs):
    kwargs.setdefault("method", "GET")
    kwargs.setdefault("user_agent", "Mozilla/5.0")
    return RequestContext(path=path, ip=ip, **kwargs)


def _break_store(monkeypatch, redis_client):
    def _timeout(*args, **kwargs):
        raise RedisTimeoutError("Timeout reading from socket")

    monkeypatch.setattr(redis_client, "pipeline", _timeout)
    monkeypatch.setattr(redis_client, "hgetall", _timeout)
    monkeypatch.setattr(redis_client, "smembers", _timeout)
    monkeypatch.setattr(redis_client, "hset", _timeout)
    monkeypatch.setattr(redis_client, "sadd", _timeout)


class TestRequestChain:
    def test_benign_requests_leave_no_trace(self, service):
        for _ in range(3):
            assert service.check_request(_ctx()).allowed

        assert service.recorder.events() == []
        assert service.get_threat("198.51.100.7") is None

    def test_rate_limit_boundary(self, service):
        decisions = [service.check_request(_ctx()) for _ in range(4)]

        assert [d.allowed for d in decisions] == [True, True, True, False]
        rejected = decisions[-1]
        assert rejected.status == 429
        assert rejected.code == "rate_limited"
        assert 0 < rejected.retry_after <= 60

        event = service.recorder.events()[-1]
        assert event.type is EventType.RATE_LIMIT
        assert event.severity is Severity.MEDIUM
        assert event.details == {"limit": 3, "window": 60_000}

    def test_authenticated_identity_is_rate_limited_per_user(self, service):
        for ip in ("198.51.100.1", "198.51.100.2", "198.51.100.3"):
            assert service.check_request(_ctx(ip=ip, user_id="42")).allowed
        assert not service.check_request(_ctx(ip="198.51.100.4", user_id="42")).allowed
        assert service.check_request(_ctx(ip="198.51.100.4")).allowed

    def test_blocklist_wins_even_with_zero_score(self, service):
        decision = service.check_request(_ctx(ip="203.0.113.66"))

        assert decision.status == 403
        assert decision.code == "ip_blocked"
        assert decision.retry_after is None
        event = service.recorder.events()[-1]
        assert event.type is EventType.BLOCKED_IP
        assert event.severity is Severity.HIGH
        assert event.details == {"reason": "blacklisted"}

    def test_reputation_block_is_critical(self, service):
        service.reputation.load({
            "198.51.100.9": ThreatIntelligenceEntry(ip="198.51.100.9", risk_score=90, blocked=True)
        })

        decision = service.check_request(_ctx(ip="198.51.100.9"))

        assert decision.status == 403
        event = service.recorder.events()[-1]
        assert event.severity is Severity.CRITICAL
        assert event.details == {"reason": "threat_intelligence", "riskScore": 90}

    def test_allowlisted_ip_skips_throttling(self, service):
        service.reputation.load({
            "10.0.0.1": ThreatIntelligenceEntry(ip="10.0.0.1", risk_score=100, blocked=True)
        })
        for _ in range(10):
            assert service.check_request(_ctx(ip="10.0.0.1")).allowed

    def test_brute_force_lockout_after_free_retries(self, service):
        ctx = _ctx(path="/auth/login", method="POST")
        for _ in range(2):
            service.record_failed_attempt(ctx.ip, ctx.path)
        assert service.brute_force_guard.check(ctx).allowed

        attempts = service.record_failed_attempt(ctx.ip, ctx.path)
        decision = service.brute_force_guard.check(ctx)

        assert attempts == 3
        assert decision.status == 429
        assert decision.code == "too_many_attempts"
        assert 0 < decision.retry_after <= 20
        event = service.recorder.events()[-1]
        assert event.type is EventType.BRUTE_FORCE
        assert event.details["attempts"] == 3

    def test_suspicious_activity_is_detected_but_never_rejected(self, service):
        ctx = _ctx(user_agent="sqlmap/1.7")
        decision = service.check_request(ctx)

        assert decision.allowed
        event = service.recorder.events()[-1]
        assert event.type is EventType.SUSPICIOUS_ACTIVITY
        assert event.blocked is False
        assert event.details["source"] == "user_agent"
        assert service.get_threat(ctx.ip).risk_score == 20

    def test_patterns_are_tried_in_configured_order(self, service):
        ctx = _ctx(url="/api/items?q=../../etc/passwd", user_agent="curl crawler")
        service.check_request(ctx)

        event = service.recorder.events()[-1]
        assert event.details["pattern"] == "bot|crawler|spider|scraper"
        assert event.details["matchedContent"] == "/api/items?q=../../etc/passwd"

    def test_body_is_scanned(self, service):
        ctx = _ctx(method="POST", body={"comment": "x UNION ALL SELECT password"})
        service.check_request(ctx)
        assert service.recorder.events()[-1].details["source"] == "body"

    def test_repeated_detections_end_in_auto_block(self, make_service):
        service = make_service(SecurityConfig(rate_limit=RateLimitConfig(max=100)))
        ctx = _ctx(user_agent="nikto")
        for _ in range(4):
            assert service.check_request(ctx).allowed

        assert service.get_threat(ctx.ip).blocked is True
        assert service.check_request(ctx).status == 403

    def test_exempt_paths_skip_the_chain(self, make_service):
        service = make_service(SecurityConfig(
            rate_limit=RateLimitConfig(max=1), exempt_paths=frozenset({"/api/health"})
        ))
        for _ in range(5):
            assert service.check_request(_ctx(path="/api/health")).allowed


class TestFailOpen:
    def test_store_timeout_lets_request_through(self, service, redis_client, monkeypatch, caplog):
        _break_store(monkeypatch, redis_client)

        with caplog.at_level(logging.ERROR, logger="bastion"):
            decision = service.check_request(_ctx())

        assert decision.allowed
        assert any("Rate limit indisponível" in r.getMessage() for r in caplog.records)

    def test_failed_attempt_during_outage_is_logged(self, service, redis_client, monkeypatch, caplog):
        _break_store(monkeypatch, redis_client)

        with caplog.at_level(logging.ERROR, logger="bastion"):
            assert service.record_failed_attempt("198.51.100.7", "/auth/login") is None

        assert any(r.levelno == logging.ERROR for r in caplog.records)

    def test_unexpected_errors_fail_open(self, service, monkeypatch):
        def _boom(ctx):
            raise KeyError("boom")

        monkeypatch.setattr(service.ip_filter, "check", _boom)
        assert service.check_request(_ctx()).allowed

    def test_init_survives_store_outage(self, service, redis_client, monkeypatch):
        _break_store(monkeypatch, redis_client)
        service.init()
        try:
            assert service.initialized
            assert len(service.reputation) == 0
        finally:
            service.shutdown()


class TestSkipSuccessfulRequests:
    def test_successful_responses_are_not_counted(self, make_service):
        service = make_service(SecurityConfig(
            rate_limit=RateLimitConfig(window_ms=60_000, max=2, skip_successful_requests=True)
        ))
        for _ in range(5):
            decision = service.check_request(_ctx())
            assert decision.allowed
            service.on_response(decision.rate_limit_identity, 200)

        for _ in range(2):
            decision = service.check_request(_ctx())
            service.on_response(decision.rate_limit_identity, 500)
        assert not service.check_request(_ctx()).allowed

    def test_disabled_by_default(self, service):
        for _ in range(3):
            decision = service.check_request(_ctx())
            service.on_response(decision.rate_limit_identity, 200)
        assert not service.check_request(_ctx()).allowed


class TestPersistence:
    def test_events_and_reputation_are_persisted_in_background(self, service, redis_client):
        service.check_request(_ctx(user_agent="nmap"))
        assert service.writer.flush()

        raw_events = redis_client.lrange("events:log", 0, -1)
        assert len(raw_events) == 1
        assert json.loads(raw_events[0])["type"] == "suspicious_activity"

        stored = json.loads(redis_client.hget("threat:intelligence", "198.51.100.7"))
        assert stored["riskScore"] == 20
        assert stored["threatTypes"] == ["suspicious_activity"]

    def test_init_loads_persisted_state(self, make_service, service, redis_client):
        service.block_ip("192.0.2.50", "scanner")

        fresh = make_service()
        fresh.init()
        try:
            assert fresh.get_threat("192.0.2.50").blocked is True
            assert fresh.lists.is_blocklisted("192.0.2.50")
            assert fresh.check_request(_ctx(ip="192.0.2.50")).status == 403
        finally:
            fresh.shutdown()

    def test_sync_from_store_merges_other_replicas(self, make_service, service):
        other = make_service()
        other.check_request(_ctx(ip="198.51.100.20", user_agent="sqlmap"))
        other.writer.flush()

        assert service.get_threat("198.51.100.20") is None
        assert service.sync_from_store() == 1
        assert service.get_threat("198.51.100.20").risk_score == 20


class TestAdminOperations:
    def test_block_then_unblock(self, service, redis_client):
        result = service.block_ip("192.0.2.10", "manual review")
        assert result["persisted"] is True
        assert result["entry"].risk_score == 100
        assert redis_client.sismember("threat:blocklist", "192.0.2.10")
        assert service.check_request(_ctx(ip="192.0.2.10")).status == 403

        result = service.unblock_ip("192.0.2.10")
        assert result["entry"].blocked is False
        assert not redis_client.sismember("threat:blocklist", "192.0.2.10")
        assert service.check_request(_ctx(ip="192.0.2.10")).allowed

    def test_unblock_is_not_undone_by_queued_writes(self, make_service, service, redis_client):
        for _ in range(2):
            service.recorder.record(
                EventType.BRUTE_FORCE, Severity.HIGH,
                ip="198.51.100.9", endpoint="/auth/login", method="POST", blocked=True,
            )
        assert service.get_threat("198.51.100.9").blocked is True

        result = service.unblock_ip("198.51.100.9")
        assert result["persisted"] is True
        service.writer.flush()

        stored = json.loads(redis_client.hget("threat:intelligence", "198.51.100.9"))
        assert stored["blocked"] is False
        assert stored["riskScore"] == 40

        service.sync_from_store()
        assert service.get_threat("198.51.100.9").blocked is False

        fresh = make_service()
        fresh.init()
        try:
            assert fresh.get_threat("198.51.100.9").blocked is False
            assert fresh.check_request(_ctx(ip="198.51.100.9")).allowed
        finally:
            fresh.shutdown()

    def test_unblock_with_running_writer(self, service, redis_client):
        service.writer.start()
        for _ in range(2):
            service.recorder.record(
                EventType.BRUTE_FORCE, Severity.HIGH,
                ip="198.51.100.9", endpoint="/auth/login", method="POST", blocked=True,
            )
        assert service.unblock_ip("198.51.100.9")["persisted"] is True
        assert service.writer.flush(timeout=2)

        stored = json.loads(redis_client.hget("threat:intelligence", "198.51.100.9"))
        assert stored["blocked"] is False

    def test_manual_block_keeps_event_threat_types(self, service):
        service.check_request(_ctx(ip="198.51.100.30", user_agent="sqlmap"))
        entry = service.block_ip("198.51.100.30")["entry"]
        assert entry.threat_types == {"suspicious_activity"}

    def test_unblock_from_low_score_clamps_to_zero(self, service):
        service.reputation.load({
            "192.0.2.30": ThreatIntelligenceEntry(ip="192.0.2.30", risk_score=30, blocked=True)
        })
        assert service.unblock_ip("192.0.2.30")["entry"].risk_score == 0

    def test_block_during_outage_still_applies_in_memory(self, service, redis_client, monkeypatch):
        _break_store(monkeypatch, redis_client)
        result = service.block_ip("192.0.2.40")
        assert result["persisted"] is False
        assert service.check_request(_ctx(ip="192.0.2.40")).status == 403


class TestQueries:
    def test_events_are_most_recent_first_and_filterable(self, service):
        service.check_request(_ctx(ip="198.51.100.1", user_agent="nmap"))
        service.check_request(_ctx(ip="203.0.113.66"))
        service.check_request(_ctx(ip="198.51.100.2", user_agent="nikto"))

        events = service.get_security_events()
        assert [e.ip for e in events] == ["198.51.100.2", "203.0.113.66", "198.51.100.1"]

        only_blocked = service.get_security_events(event_type=EventType.BLOCKED_IP)
        assert [e.ip for e in only_blocked] == ["203.0.113.66"]
        assert [e.ip for e in service.get_security_events(limit=1, offset=1)] == ["203.0.113.66"]

    def test_events_from_store(self, service):
        service.check_request(_ctx(ip="198.51.100.1", user_agent="nmap"))
        service.check_request(_ctx(ip="198.51.100.2", user_agent="nmap"))
        service.writer.flush()

        events = service.get_security_events(source="store")
        assert [e.ip for e in events] == ["198.51.100.2", "198.51.100.1"]
        filtered = service.get_security_events(source="store", ip="198.51.100.1")
        assert [e.ip for e in filtered] == ["198.51.100.1"]

    def test_unknown_source_is_rejected(self, service):
        with pytest.raises(ValueError):
            service.get_security_events(source="disk")

    def test_stats(self, service):
        service.check_request(_ctx(ip="203.0.113.66"))
        service.block_ip("192.0.2.10")
        service.check_request(_ctx(ip="198.51.100.3", user_agent="sqlmap"))

        stats = service.get_security_stats()
        assert stats["totalEvents"] == 2
        assert stats["recentEvents"] == 2
        assert stats["eventsByType"] == {"blocked_ip": 1, "suspicious_activity": 1}
        assert stats["eventsBySeverity"] == {"high": 1, "medium": 1}
        assert stats["blockedIPs"] == 2
        assert stats["threatIntelligenceEntries"] == 3
        assert stats["highRiskIPs"] == 2
        assert stats["autoBlockedIPs"] == 1

    def test_threat_table_filters(self, service):
        service.block_ip("192.0.2.10")
        service.check_request(_ctx(ip="198.51.100.3", user_agent="sqlmap"))

        everything = service.get_threat_intelligence()
        assert [e.ip for e in everything] == ["192.0.2.10", "198.51.100.3"]
        assert [e.ip for e in service.get_threat_intelligence(min_score=50)] == ["192.0.2.10"]
        assert [e.ip for e in service.get_threat_intelligence(blocked=False)] == ["198.51.100.3"]


def test_security_stage_requires_check():
    class Incomplete(SecurityStage):
        pass

    with pytest.raises(TypeError):
        Incomplete()
