"""
Scripted contact-form dialogue.

A visitor who mentions hiring (see ``CONTACT_CONFIG["TRIGGER_KEYWORDS"]``)
is walked through a fixed list of questions, one per turn. Answers are kept
verbatim in an in-memory session keyed by session id; once the last field is
answered the owner is notified, the exchange is recorded and the session is
dropped.

    NoSession --trigger--> Collecting(0) --answer--> ... Collecting(n-1) --answer--> Completed
"""

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from chatrelay.utils.models import Source

logger = logging.getLogger(__name__)


@dataclass
class ContactState:
    """Progress of one contact flow."""
    field_index: int = 0
    collected: Dict[str, str] = field(default_factory=dict)
    touched_at: float = field(default_factory=time.monotonic)


@dataclass
class ContactTurn:
    """Outcome of one turn handled by the contact dialogue."""
    reply: str
    source: Source
    state: Optional[ContactState]  # None once the flow completed


class _KeyLock:
    """A per-session lock and the number of turns holding or waiting for it."""

    def __init__(self):
        self.lock = threading.Lock()
        self.users = 0


class SessionStore:
    """In-memory session map with per-key locking and idle expiry.

    ``lock(session_id)`` serializes work on a single session; different
    sessions never wait on each other beyond the short registry lookup.
    A key lock lives only while some turn holds or waits for it. Expired
    sessions are dropped when read and swept whenever a session is stored.
    """

    def __init__(self, ttl: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self.clock = clock
        self._sessions: Dict[str, ContactState] = {}
        self._locks: Dict[str, _KeyLock] = {}
        self._registry_lock = threading.Lock()
        self._sessions_lock = threading.Lock()

    @contextmanager
    def lock(self, session_id: str) -> Iterator[None]:
        with self._registry_lock:
            entry = self._locks.get(session_id)
            if entry is None:
                entry = self._locks[session_id] = _KeyLock()
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._registry_lock:
                entry.users -= 1
                if entry.users == 0:
                    del self._locks[session_id]

    def _expired(self, state: ContactState, now: float) -> bool:
        return self.ttl is not None and now - state.touched_at > self.ttl

    def get(self, session_id: str) -> Optional[ContactState]:
        with self._sessions_lock:
            state = self._sessions.get(session_id)
            if state is None:
                return None
            if self._expired(state, self.clock()):
                logger.info("Contact session %s expired after %.0fs idle", session_id, self.ttl)
                del self._sessions[session_id]
                return None
            return state

    def put(self, session_id: str, state: ContactState) -> None:
        now = self.clock()
        with self._sessions_lock:
            self._sweep(now)
            state.touched_at = now
            self._sessions[session_id] = state

    def _sweep(self, now: float) -> None:
        expired = [key for key, state in self._sessions.items() if self._expired(state, now)]
        for key in expired:
            del self._sessions[key]
        if expired:
            logger.info("Dropped %d abandoned contact session(s)", len(expired))

    def delete(self, session_id: str) -> None:
        with self._sessions_lock:
            self._sessions.pop(session_id, None)

    def __contains__(self, session_id: str) -> bool:
        return self.get(session_id) is not None

    def __len__(self) -> int:
        return len(self._sessions)


class ContactDialogue:
    def __init__(
        self,
        store: SessionStore,
        fields: Sequence[Tuple[str, str]],
        trigger_keywords: Sequence[str],
        acknowledgement: str,
        transcripts,
        dispatcher,
        notify_title: str = "Formulario completado",
    ):
        if not fields:
            raise ValueError("Contact dialogue needs at least one field")
        self.store = store
        self.fields = list(fields)
        self.trigger_keywords = [kw.lower() for kw in trigger_keywords]
        self.acknowledgement = acknowledgement
        self.transcripts = transcripts
        self.dispatcher = dispatcher
        self.notify_title = notify_title

    def is_trigger(self, prompt: str) -> bool:
        normalized = prompt.lower().strip()
        return any(kw in normalized for kw in self.trigger_keywords)

    def question_for(self, index: int) -> str:
        return self.fields[index][1]

    def handle_turn(self, session_id: Optional[str], prompt: str) -> Optional[ContactTurn]:
        """Advance the contact flow for this session, or return None if it doesn't apply."""
        if not session_id:
            return None

        with self.store.lock(session_id):
            state = self.store.get(session_id)

            if state is None:
                if not self.is_trigger(prompt):
                    return None
                state = ContactState()
                self.store.put(session_id, state)
                logger.info("📝 Contact flow started for session %s", session_id)
                return ContactTurn(self.question_for(0), Source.CONTACT_FORM, state)

            # Answers are stored as typed, no validation
            name = self.fields[state.field_index][0]
            state.collected[name] = prompt
            state.field_index += 1

            if state.field_index < len(self.fields):
                self.store.put(session_id, state)
                return ContactTurn(self.question_for(state.field_index), Source.CONTACT_FORM, state)

            self.store.delete(session_id)

        self._complete(session_id, prompt, state.collected)
        return ContactTurn(self.acknowledgement, Source.CONTACT_COMPLETE, None)

    def _complete(self, session_id: str, prompt: str, collected: Dict[str, str]) -> None:
        logger.info("📩 Contact flow completed for session %s", session_id)
        try:
            self.dispatcher.dispatch(self.notify_title, format_contact_message(collected, prompt))
        except Exception:
            logger.exception("❌ Could not queue contact notification for session %s", session_id)

        self.transcripts.create_transcript(prompt, self.acknowledgement, Source.CONTACT_COMPLETE, session_id)


def format_contact_message(collected: Dict[str, str], last_prompt: str) -> str:
    lines: List[str] = ["📩 Nuevo contacto desde el chat:"]
    for name, value in collected.items():
        lines.append(f"{name.capitalize()}: {value}")
    lines.append(f"Mensaje usuario: {last_prompt}")
    return "\n".join(lines)
