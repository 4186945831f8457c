"""Tests for SessionManager resolution, caching and re-authentication."""

from __future__ import annotations

import stat
import threading

import pytest

from dotvault.errors import AuthRequired, OfflineUnavailable, SessionExpired
from dotvault.models import SessionSource, SessionState
from dotvault.session import SessionManager


class TestResolution:
    """Environment -> cache -> unlock."""

    def test_env_override_wins(self, settings, backend, fake_state):
        fake_state.valid_tokens = {"from-env"}
        manager = SessionManager(settings, env={"FAKE_SESSION": "from-env"})
        session = manager.get_session(backend)

        assert session.source == SessionSource.ENV
        assert session.secret == "from-env"
        assert fake_state.count("unlock") == 0

    def test_invalid_env_falls_through(self, settings, backend, fake_state):
        manager = SessionManager(settings, env={"FAKE_SESSION": "stale"})
        session = manager.get_session(backend)
        assert session.source == SessionSource.UNLOCK
        assert session.secret == "tok-1"

    def test_unlock_caches_token_0600(self, sessions, backend, settings):
        sessions.get_session(backend)
        cache = settings.sessions_dir / "fake.session"

        assert cache.read_text() == "tok-1"
        assert stat.S_IMODE(cache.stat().st_mode) == 0o600
        assert stat.S_IMODE(settings.sessions_dir.stat().st_mode) == 0o700

    def test_valid_cache_reused(self, settings, backend, fake_state):
        settings.sessions_dir.mkdir(parents=True)
        (settings.sessions_dir / "fake.session").write_text("tok-1\n")
        session = SessionManager(settings, env={}).get_session(backend)

        assert session.source == SessionSource.CACHE
        assert fake_state.count("unlock") == 0

    def test_invalid_cache_discarded(self, settings, backend, fake_state):
        settings.sessions_dir.mkdir(parents=True)
        cache = settings.sessions_dir / "fake.session"
        cache.write_text("garbage")
        fake_state.next_token = "tok-2"
        fake_state.valid_tokens = {"tok-2"}

        session = SessionManager(settings, env={}).get_session(backend)

        assert session.source == SessionSource.UNLOCK
        assert session.secret == "tok-2"
        assert cache.read_text() == "tok-2"

    def test_not_logged_in(self, sessions, backend, fake_state):
        fake_state.logged_in = False
        with pytest.raises(AuthRequired) as excinfo:
            sessions.get_session(backend)
        assert excinfo.value.remediation == "fake login"
        assert fake_state.count("unlock") == 0

    def test_empty_token_not_cached(self, sessions, backend, settings, fake_state):
        fake_state.next_token = ""
        session = sessions.get_session(backend)
        assert session.secret == ""
        assert not (settings.sessions_dir / "fake.session").exists()

    def test_offline_fails_fast(self, settings, backend, fake_state):
        manager = SessionManager(settings.model_copy(update={"offline": True}), env={})
        with pytest.raises(OfflineUnavailable):
            manager.get_session(backend)
        assert fake_state.calls == []

    def test_token_not_in_repr(self, sessions, backend):
        session = sessions.get_session(backend)
        assert "tok-1" not in repr(session)
        assert "tok-1" not in str(session)


class TestMemoization:
    def test_resolved_once(self, sessions, backend, fake_state):
        first = sessions.get_session(backend)
        second = sessions.get_session(backend)
        assert first is second
        assert fake_state.count("unlock") == 1

    def test_resolved_once_across_threads(self, sessions, backend, fake_state):
        results = []

        def worker():
            results.append(sessions.get_session(backend))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len({id(s) for s in results}) == 1
        assert fake_state.count("login_check") == 1


class TestReauthentication:
    def test_reauth_once(self, sessions, backend, fake_state, settings):
        sessions.get_session(backend)
        fake_state.next_token = "tok-2"
        expired = SessionExpired("get failed", "expired", "fake unlock")

        renewed = sessions.reauthenticate(backend, expired)
        assert renewed.secret == "tok-2"
        assert sessions.get_session(backend) is renewed
        assert (settings.sessions_dir / "fake.session").read_text() == "tok-2"

        with pytest.raises(SessionExpired):
            sessions.reauthenticate(backend, expired)

    def test_clear_removes_cache(self, sessions, backend, settings):
        sessions.get_session(backend)
        assert sessions.clear(backend) is True
        assert not (settings.sessions_dir / "fake.session").exists()
        assert sessions.clear(backend) is False

    def test_stale_caller_gets_renewed_session(self, sessions, backend, fake_state):
        stale = sessions.get_session(backend)
        fake_state.next_token = "tok-2"
        expired = SessionExpired("get failed", "expired", "fake unlock")
        renewed = sessions.reauthenticate(backend, expired, stale)

        assert sessions.reauthenticate(backend, expired, stale) is renewed
        assert fake_state.count("unlock") == 2

    def test_spent_reauth_marks_session_expired(self, sessions, backend, fake_state):
        first = sessions.get_session(backend)
        expired = SessionExpired("get failed", "expired", "fake unlock")
        renewed = sessions.reauthenticate(backend, expired, first)

        with pytest.raises(SessionExpired):
            sessions.reauthenticate(backend, expired, renewed)

        assert sessions.state(backend) == SessionState.EXPIRED
        with pytest.raises(SessionExpired) as excinfo:
            sessions.get_session(backend)
        assert excinfo.value.remediation == "fake unlock"


class TestState:
    def test_unauthenticated_before_login(self, sessions, backend, fake_state):
        fake_state.logged_in = False
        assert sessions.state(backend) == SessionState.UNAUTHENTICATED

    def test_locked_until_resolved(self, sessions, backend, fake_state):
        assert sessions.state(backend) == SessionState.LOCKED
        assert fake_state.count("unlock") == 0
        sessions.get_session(backend)
        assert sessions.state(backend) == SessionState.UNLOCKED

    def test_clear_locks_again(self, sessions, backend):
        sessions.get_session(backend)
        sessions.clear(backend)
        assert sessions.state(backend) == SessionState.LOCKED
