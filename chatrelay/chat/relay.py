"""
Model relay: prompt in, cleaned text increments out.

The upstream body arrives as byte fragments cut at arbitrary points, so the
engine never parses a fragment on its own. Bytes go through an incremental
UTF-8 decoder, and for line-framed bodies through ``LineBuffer``, which holds
back the trailing partial line until its terminator arrives. Each complete
line is unwrapped (``data:`` prefix, JSON token shapes) and cleaned before it
is yielded.

Every run that gets past routing records exactly one transcript: the full
reply with source ``model``, the partial reply with source ``error`` when the
stream breaks, or the error text when the backend never answered.
"""

import codecs
import json
import logging
import time
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

import requests

from chatrelay.chat.backends import Message, UpstreamError
from chatrelay.chat.cleaner import clean
from chatrelay.utils.models import Source
from chatrelay.utils.retry import RETRYABLE_ERRORS, with_retry

logger = logging.getLogger(__name__)

CONNECT_ERROR_MESSAGE = "⚠️ Error al conectar con el modelo local."
INTERRUPTED_MESSAGE = "⚠️ La respuesta del modelo se interrumpió."

_SSE_FIELDS = ("event:", "id:", "retry:")


class LineBuffer:
    """Reassembles newline-terminated lines from arbitrarily split bytes."""

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending = ""

    def feed(self, data: bytes) -> List[str]:
        self._pending += self._decoder.decode(data)
        *lines, self._pending = self._pending.split("\n")
        return [line.rstrip("\r") for line in lines if line.strip()]

    def flush(self) -> List[str]:
        self._pending += self._decoder.decode(b"", final=True)
        rest, self._pending = self._pending.rstrip("\r"), ""
        return [rest] if rest.strip() else []


class TextStream:
    """Incremental decoder for unframed text (subprocess stdout)."""

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def feed(self, data: bytes) -> List[str]:
        text = self._decoder.decode(data)
        return [text] if text else []

    def flush(self) -> List[str]:
        text = self._decoder.decode(b"", final=True)
        return [text] if text else []


def _token_from_json(data: Any) -> Optional[str]:
    if not isinstance(data, dict):
        return None

    # llama-server /completion
    if isinstance(data.get("content"), str):
        return data["content"]
    # Ollama /api/generate
    if isinstance(data.get("response"), str):
        return data["response"]
    # Ollama /api/chat
    message = data.get("message")
    if isinstance(message, dict) and isinstance(message.get("content"), str):
        return message["content"]

    delta = data.get("delta")
    if isinstance(delta, str):
        return delta
    if isinstance(delta, dict) and isinstance(delta.get("content"), str):
        return delta["content"]

    # OpenAI-compatible
    choices = data.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        choice = choices[0]
        for key in ("delta", "message"):
            inner = choice.get(key)
            if isinstance(inner, dict) and isinstance(inner.get("content"), str):
                return inner["content"]
        if isinstance(choice.get("text"), str):
            return choice["text"]

    return None


def extract_token(line: str) -> Optional[str]:
    """Pull the generated text out of one upstream line.

    Returns None for protocol noise (SSE comments and fields, ``[DONE]``,
    JSON records carrying no text). A line that is not JSON is returned as is.
    """
    payload = line.strip()
    if not payload or payload.startswith(":") or payload.startswith(_SSE_FIELDS):
        return None
    if payload.startswith("data:"):
        payload = payload[len("data:"):].strip()
        if not payload:
            return None
    if payload == "[DONE]":
        return None

    try:
        data = json.loads(payload)
    except ValueError:
        return payload

    if isinstance(data, dict):
        return _token_from_json(data)
    return payload


def build_messages(persona: str, history: Sequence[Tuple[str, str]], prompt: str) -> List[Message]:
    messages: List[Message] = [{"role": "system", "content": persona}]
    for past_prompt, past_reply in history:
        messages.append({"role": "user", "content": past_prompt})
        messages.append({"role": "assistant", "content": past_reply})
    messages.append({"role": "user", "content": prompt})
    return messages


class RelayEngine:
    def __init__(
        self,
        backend,
        transcripts,
        dispatcher=None,
        persona: str = "",
        history_turns: int = 5,
        max_attempts: int = 3,
        timeout: float = 90.0,
        backoff: float = 0.0,
        alert_keywords: Iterable[str] = (),
        alert_title: str = "Consulta sobre el perfil",
        canned_reply: str = "",
        canned_delay: float = 0.05,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.backend = backend
        self.transcripts = transcripts
        self.dispatcher = dispatcher
        self.persona = persona
        self.history_turns = history_turns
        self.max_attempts = max_attempts
        self.timeout = timeout
        self.backoff = backoff
        self.alert_keywords = [kw.lower() for kw in alert_keywords]
        self.alert_title = alert_title
        self.canned_reply = canned_reply
        self.canned_delay = canned_delay
        self.sleep = sleep

    def is_alert(self, prompt: str) -> bool:
        normalized = prompt.lower().strip()
        return bool(self.canned_reply) and any(kw in normalized for kw in self.alert_keywords)

    def stream(self, prompt: str, session_id: Optional[str] = None) -> Iterator[str]:
        """Yield cleaned increments for the prompt; the transcript is saved before the iterator ends."""
        return self._run(prompt, session_id, {}, paced=True)

    def complete(self, prompt: str, session_id: Optional[str] = None) -> Tuple[str, Source]:
        """Non-streaming variant: the whole reply and where it came from. Canned replies are not paced."""
        outcome: Dict[str, Any] = {}
        reply = "".join(self._run(prompt, session_id, outcome, paced=False))
        return reply.strip(), outcome.get("source", Source.MODEL)

    def _run(self, prompt: str, session_id: Optional[str], outcome: Dict[str, Any], paced: bool) -> Iterator[str]:
        if self.is_alert(prompt):
            outcome["source"] = Source.CANNED
            yield from self._canned(prompt, session_id, paced)
            return

        history = self.transcripts.recent_exchanges(session_id, self.history_turns)
        messages = build_messages(self.persona, history, prompt)

        try:
            fragments = with_retry(
                lambda timeout: self.backend.open(messages, timeout),
                max_attempts=self.max_attempts,
                timeout=self.timeout,
                backoff=self.backoff,
                retry_on=RETRYABLE_ERRORS + (UpstreamError,),
                label="model request",
            )
        except Exception as e:
            self._log_unavailable(e)
            outcome["source"] = Source.ERROR
            detail = f"Detalle técnico: {e}"
            yield CONNECT_ERROR_MESSAGE
            yield f" {detail}"
            self.transcripts.create_transcript(prompt, f"{CONNECT_ERROR_MESSAGE} {detail}", Source.ERROR, session_id)
            return

        increments: List[str] = []
        source = Source.MODEL
        try:
            for piece in self._decode(fragments):
                cleaned = clean(piece)
                if cleaned:
                    increments.append(cleaned)
                    yield cleaned
        except (requests.RequestException, UpstreamError, OSError) as e:
            # Not retried: the visitor already has part of the answer
            logger.error("❌ Model stream broke after %d increments: %s", len(increments), e)
            source = Source.ERROR
            yield f" {INTERRUPTED_MESSAGE}"
        finally:
            close = getattr(fragments, "close", None)
            if close is not None:
                close()

        reply = clean("".join(increments)).strip()
        outcome["source"] = source
        self.transcripts.create_transcript(prompt, reply, source, session_id)
        logger.info("✅ Relayed %d increments for session %s (%s)", len(increments), session_id or "anonymous", source.value)

    def _decode(self, fragments: Iterable[bytes]) -> Iterator[str]:
        framing = getattr(self.backend, "framing", "lines")
        if framing == "text":
            reader = TextStream()
            for fragment in fragments:
                yield from reader.feed(fragment)
            yield from reader.flush()
            return

        buffer = LineBuffer()
        for fragment in fragments:
            for line in buffer.feed(fragment):
                token = extract_token(line)
                if token:
                    yield token
        for line in buffer.flush():
            token = extract_token(line)
            if token:
                yield token

    def _canned(self, prompt: str, session_id: Optional[str], paced: bool) -> Iterator[str]:
        logger.info("🔔 Alert keyword in prompt, answering with the canned bio")
        if self.dispatcher is not None:
            try:
                self.dispatcher.dispatch(self.alert_title, f"Un visitante preguntó: {prompt}")
            except Exception:
                logger.exception("❌ Could not queue alert notification")

        words = self.canned_reply.split(" ")
        for i, word in enumerate(words):
            if i and paced:
                self.sleep(self.canned_delay)
            yield word if i == 0 else " " + word

        self.transcripts.create_transcript(prompt, self.canned_reply, Source.CANNED, session_id)

    @staticmethod
    def _log_unavailable(error: Exception) -> None:
        if isinstance(error, requests.Timeout):
            logger.error("⏱️ Model request timed out on every attempt: %s", error)
        elif "Tunnel Unavailable" in str(error) or isinstance(error, requests.ConnectionError):
            logger.error("🔌 Model endpoint unreachable (tunnel gone?): %s", error)
        else:
            logger.error("❌ Model request failed: %s", error)
