import logging
from dataclasses import dataclass
from typing import Iterator, Optional

from chatrelay.chat.backends import build_backend
from chatrelay.chat.contact import ContactDialogue, SessionStore
from chatrelay.chat.dictionary import DictionaryMatcher
from chatrelay.chat.relay import RelayEngine
from chatrelay.config import CONTACT_CONFIG, DICTIONARY, MODEL_CONFIG, NOTIFY_CONFIG, RELAY_CONFIG
from chatrelay.db.store import TranscriptStore
from chatrelay.notify.webhook import NotificationDispatcher, WebhookNotifier
from chatrelay.utils.models import Source

logger = logging.getLogger(__name__)


@dataclass
class TurnResult:
    """A routed prompt: either a ready reply, or a model stream still to run."""
    source: Source
    reply: Optional[str] = None
    stream: Optional[Iterator[str]] = None

    @property
    def is_streaming(self) -> bool:
        return self.stream is not None


class ChatAssistant:
    """Routes each prompt: contact flow first, then the dictionary, then the model."""

    def __init__(self, contact: ContactDialogue, dictionary: DictionaryMatcher, relay: RelayEngine, transcripts: TranscriptStore):
        self.contact = contact
        self.dictionary = dictionary
        self.relay = relay
        self.transcripts = transcripts

    def _ready_reply(self, prompt: str, session_id: Optional[str]) -> Optional[TurnResult]:
        turn = self.contact.handle_turn(session_id, prompt)
        if turn is not None:
            return TurnResult(source=turn.source, reply=turn.reply)

        answer = self.dictionary.match(prompt)
        if answer is not None:
            logger.info("📖 Dictionary answer for session %s", session_id or "anonymous")
            self.transcripts.create_transcript(prompt, answer, Source.DICTIONARY, session_id)
            return TurnResult(source=Source.DICTIONARY, reply=answer)

        return None

    def route(self, prompt: str, session_id: Optional[str] = None) -> TurnResult:
        result = self._ready_reply(prompt, session_id)
        if result is not None:
            return result
        return TurnResult(source=Source.MODEL, stream=self.relay.stream(prompt, session_id))

    def reply(self, prompt: str, session_id: Optional[str] = None) -> TurnResult:
        """Like ``route`` but runs the model to the end and returns its text."""
        result = self._ready_reply(prompt, session_id)
        if result is not None:
            return result
        text, source = self.relay.complete(prompt, session_id)
        return TurnResult(source=source, reply=text)


def build_assistant(session_factory) -> ChatAssistant:
    """Wire the assistant from the module-level config."""
    transcripts = TranscriptStore(session_factory)
    dispatcher = NotificationDispatcher(
        WebhookNotifier(
            NOTIFY_CONFIG["WEBHOOK_URL"],
            timeout=NOTIFY_CONFIG["TIMEOUT"],
            max_attempts=NOTIFY_CONFIG["MAX_ATTEMPTS"],
        ),
        workers=NOTIFY_CONFIG["WORKERS"],
    )
    contact = ContactDialogue(
        store=SessionStore(ttl=CONTACT_CONFIG["SESSION_TTL"]),
        fields=CONTACT_CONFIG["FIELDS"],
        trigger_keywords=CONTACT_CONFIG["TRIGGER_KEYWORDS"],
        acknowledgement=CONTACT_CONFIG["ACKNOWLEDGEMENT"],
        transcripts=transcripts,
        dispatcher=dispatcher,
        notify_title=CONTACT_CONFIG["NOTIFY_TITLE"],
    )
    relay = RelayEngine(
        backend=build_backend(MODEL_CONFIG),
        transcripts=transcripts,
        dispatcher=dispatcher,
        persona=RELAY_CONFIG["PERSONA"],
        history_turns=RELAY_CONFIG["HISTORY_TURNS"],
        max_attempts=MODEL_CONFIG["MAX_ATTEMPTS"],
        timeout=MODEL_CONFIG["TIMEOUT"],
        backoff=MODEL_CONFIG["RETRY_BACKOFF"],
        alert_keywords=RELAY_CONFIG["ALERT_KEYWORDS"],
        alert_title=RELAY_CONFIG["ALERT_TITLE"],
        canned_reply=RELAY_CONFIG["CANNED_BIO"],
        canned_delay=RELAY_CONFIG["CANNED_TOKEN_DELAY"],
    )
    logger.info("🤖 Chat assistant ready (%r)", relay.backend)
    return ChatAssistant(contact, DictionaryMatcher(DICTIONARY), relay, transcripts)


chat_assistant = None


def get_assistant() -> ChatAssistant:
    """Get the global assistant, building it on first use"""
    global chat_assistant
    if chat_assistant is None:
        from chatrelay.db.db import SessionLocal
        chat_assistant = build_assistant(SessionLocal)
    return chat_assistant
