"""Shared test fixtures and fakes."""

import os

# Must be set before chatrelay.config is imported anywhere
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["N8N_WEBHOOK_URL"] = ""

from concurrent.futures import Future
from typing import List, Optional, Sequence

import pytest
import requests

from chatrelay.chat.assistant import ChatAssistant
from chatrelay.chat.contact import ContactDialogue, SessionStore
from chatrelay.chat.dictionary import DictionaryMatcher
from chatrelay.chat.relay import RelayEngine
from chatrelay.config import CONTACT_CONFIG, DICTIONARY, RELAY_CONFIG
from chatrelay.db.db import create_session_factory
from chatrelay.db.store import TranscriptStore


class RecordingDispatcher:
    """Stands in for NotificationDispatcher; keeps what would have been sent."""

    def __init__(self, fail: bool = False):
        self.sent: List[tuple] = []
        self.fail = fail

    def dispatch(self, title: str, message: str) -> Future:
        if self.fail:
            raise RuntimeError("notification queue is down")
        self.sent.append((title, message))
        future = Future()
        future.set_result(True)
        return future


class FakeBackend:
    """Scripted model backend.

    ``failures`` are raised by successive ``open`` calls before the
    fragments are served; ``break_with`` is raised after the last fragment.
    """

    def __init__(
        self,
        fragments: Sequence[bytes] = (),
        failures: Sequence[Exception] = (),
        break_with: Optional[Exception] = None,
        framing: str = "lines",
    ):
        self.fragments = list(fragments)
        self.failures = list(failures)
        self.break_with = break_with
        self.framing = framing
        self.calls: List[dict] = []

    def open(self, messages, timeout):
        self.calls.append({"messages": list(messages), "timeout": timeout})
        if self.failures:
            raise self.failures.pop(0)
        return self._serve()

    def _serve(self):
        for fragment in self.fragments:
            yield fragment
        if self.break_with is not None:
            raise self.break_with


def ndjson(*tokens: str) -> bytes:
    """Newline-delimited llama-server style records for the given tokens."""
    import json
    lines = [f"data: {json.dumps({'content': token, 'stop': False})}" for token in tokens]
    lines.append(f"data: {json.dumps({'content': '', 'stop': True})}")
    return ("\n".join(lines) + "\n").encode("utf-8")


@pytest.fixture
def session_factory():
    return create_session_factory("sqlite://")


@pytest.fixture
def transcripts(session_factory):
    return TranscriptStore(session_factory)


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def session_store():
    return SessionStore(ttl=CONTACT_CONFIG["SESSION_TTL"])


@pytest.fixture
def contact(session_store, transcripts, dispatcher):
    return ContactDialogue(
        store=session_store,
        fields=CONTACT_CONFIG["FIELDS"],
        trigger_keywords=CONTACT_CONFIG["TRIGGER_KEYWORDS"],
        acknowledgement=CONTACT_CONFIG["ACKNOWLEDGEMENT"],
        transcripts=transcripts,
        dispatcher=dispatcher,
    )


@pytest.fixture
def backend():
    return FakeBackend([ndjson("Hola", ", soy", " José", ".")])


def make_relay(backend, transcripts, dispatcher=None, **overrides) -> RelayEngine:
    options = dict(
        persona="Eres un asistente.",
        history_turns=RELAY_CONFIG["HISTORY_TURNS"],
        max_attempts=3,
        timeout=5.0,
        alert_keywords=RELAY_CONFIG["ALERT_KEYWORDS"],
        canned_reply=RELAY_CONFIG["CANNED_BIO"],
        canned_delay=0.0,
        sleep=lambda _: None,
    )
    options.update(overrides)
    return RelayEngine(backend=backend, transcripts=transcripts, dispatcher=dispatcher, **options)


@pytest.fixture
def relay(backend, transcripts, dispatcher):
    return make_relay(backend, transcripts, dispatcher)


@pytest.fixture
def assistant(contact, relay, transcripts):
    return ChatAssistant(contact, DictionaryMatcher(DICTIONARY), relay, transcripts)


@pytest.fixture
def unreachable():
    return requests.ConnectionError("Tunnel Unavailable")


@pytest.fixture
def failing_dispatcher():
    return RecordingDispatcher(fail=True)


@pytest.fixture
def relay_factory(transcripts):
    """Build a relay around any backend, sharing the test's transcript store."""
    def factory(backend, dispatcher=None, **overrides):
        return make_relay(backend, transcripts, dispatcher, **overrides)
    return factory
