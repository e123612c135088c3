"""Tests for the streaming model relay."""

import pytest
import requests

from chatrelay.chat.backends import UpstreamError, UpstreamHTTPError
from chatrelay.chat.relay import (
    CONNECT_ERROR_MESSAGE,
    INTERRUPTED_MESSAGE,
    LineBuffer,
    TextStream,
    build_messages,
    extract_token,
)
from chatrelay.config import RELAY_CONFIG
from chatrelay.utils.models import Source
from tests.conftest import FakeBackend, ndjson


class TestLineBuffer:
    def test_split_at_every_offset(self):
        data = ndjson("Año", " ñandú") + 'data: {"content": " 😀 sí"}\n'.encode("utf-8")
        expected = LineBuffer().feed(data)
        assert len(expected) == 4
        assert expected[-1] == 'data: {"content": " 😀 sí"}'

        for cut in range(len(data) + 1):
            buffer = LineBuffer()
            lines = buffer.feed(data[:cut]) + buffer.feed(data[cut:]) + buffer.flush()
            assert lines == expected, cut

    def test_byte_by_byte(self):
        data = ndjson("camión")
        buffer = LineBuffer()
        lines = []
        for i in range(len(data)):
            lines.extend(buffer.feed(data[i:i + 1]))
        assert lines == LineBuffer().feed(data)

    def test_partial_line_held_until_flush(self):
        buffer = LineBuffer()
        assert buffer.feed(b"data: sin fin") == []
        assert buffer.flush() == ["data: sin fin"]

    def test_crlf_and_blank_lines(self):
        assert LineBuffer().feed(b"a\r\n\r\nb\n\n") == ["a", "b"]


class TestTextStream:
    def test_multibyte_split(self):
        stream = TextStream()
        encoded = "José".encode("utf-8")
        out = stream.feed(encoded[:4]) + stream.feed(encoded[4:]) + stream.flush()
        assert "".join(out) == "José"

    def test_lone_continuation_is_replaced(self):
        stream = TextStream()
        assert "".join(stream.feed(b"\xc3") + stream.flush()) == "�"


class TestExtractToken:
    @pytest.mark.parametrize("line, token", [
        ('data: {"content": "Hola", "stop": false}', "Hola"),
        ('{"response": " mundo", "done": false}', " mundo"),
        ('{"message": {"role": "assistant", "content": "b"}}', "b"),
        ('data: {"choices": [{"delta": {"content": "c"}}]}', "c"),
        ('data: {"choices": [{"message": {"content": "m"}}]}', "m"),
        ('{"choices": [{"text": "d"}]}', "d"),
        ('{"delta": "e"}', "e"),
        ('{"delta": {"content": "f"}}', "f"),
        ("texto plano", "texto plano"),
        ("data: 42", "42"),
    ])
    def test_token_shapes(self, line, token):
        assert extract_token(line) == token

    @pytest.mark.parametrize("line", [
        "data: [DONE]",
        ": keep-alive",
        "event: message",
        "id: 7",
        "data:",
        '{"content": "", "stop": true}',
        '{"done": true}',
        '{"choices": []}',
    ])
    def test_noise_yields_nothing(self, line):
        assert not extract_token(line)


class TestBuildMessages:
    def test_history_between_persona_and_prompt(self):
        messages = build_messages("persona", [("p1", "r1")], "p2")
        assert messages == [
            {"role": "system", "content": "persona"},
            {"role": "user", "content": "p1"},
            {"role": "assistant", "content": "r1"},
            {"role": "user", "content": "p2"},
        ]


class TestRelayStream:
    def test_increments_are_cleaned_tokens(self, relay):
        assert list(relay.stream("cuéntame algo", "s1")) == ["Hola", ", soy", " José", "."]

    def test_success_is_recorded_once(self, relay, transcripts):
        list(relay.stream("cuéntame algo", "s1"))
        rows = transcripts.query_transcripts()
        assert len(rows) == 1
        assert rows[0]["reply"] == "Hola, soy José."
        assert rows[0]["source"] == "model"
        assert rows[0]["session_id"] == "s1"

    def test_markup_is_stripped(self, relay_factory, transcripts):
        backend = FakeBackend([ndjson("[INST]", "Hola.Soy", " José", "</s>")])
        assert "".join(relay_factory(backend).stream("x")) == "Hola. Soy José"

    def test_fragment_boundaries_do_not_matter(self, relay_factory, transcripts):
        data = ndjson("Año", " ñandú")
        backend = FakeBackend([data[i:i + 3] for i in range(0, len(data), 3)])
        assert "".join(relay_factory(backend).stream("x")) == "Año ñandú"

    def test_retries_then_succeeds(self, relay_factory, transcripts, unreachable):
        backend = FakeBackend([ndjson("ok")], failures=[unreachable, unreachable])
        assert list(relay_factory(backend).stream("x")) == ["ok"]
        assert len(backend.calls) == 3
        assert transcripts.query_transcripts()[0]["source"] == "model"

    def test_upstream_http_error_is_retried(self, relay_factory):
        backend = FakeBackend([ndjson("ok")], failures=[UpstreamHTTPError(502, "bad gateway")])
        assert list(relay_factory(backend).stream("x")) == ["ok"]
        assert len(backend.calls) == 2

    def test_timeout_passed_to_backend(self, relay, backend):
        list(relay.stream("x"))
        assert backend.calls[0]["timeout"] == 5.0

    def test_all_attempts_fail(self, relay_factory, transcripts, unreachable):
        backend = FakeBackend(failures=[unreachable] * 3)
        increments = list(relay_factory(backend).stream("x", "s1"))

        assert increments[0] == CONNECT_ERROR_MESSAGE
        assert "Detalle técnico: Tunnel Unavailable" in increments[1]
        assert len(backend.calls) == 3

        rows = transcripts.query_transcripts()
        assert len(rows) == 1
        assert rows[0]["source"] == "error"
        assert rows[0]["reply"].startswith(CONNECT_ERROR_MESSAGE)

    def test_attempt_count_is_configurable(self, relay_factory, unreachable):
        backend = FakeBackend(failures=[unreachable] * 5)
        list(relay_factory(backend, max_attempts=2).stream("x"))
        assert len(backend.calls) == 2

    def test_mid_stream_break(self, relay_factory, transcripts):
        backend = FakeBackend(
            [b'data: {"content": "Hola"}\n'],
            break_with=requests.ConnectionError("connection reset"),
        )
        increments = list(relay_factory(backend).stream("x", "s1"))

        assert increments == ["Hola", f" {INTERRUPTED_MESSAGE}"]
        assert len(backend.calls) == 1
        rows = transcripts.query_transcripts()
        assert len(rows) == 1
        assert rows[0]["source"] == "error"
        assert rows[0]["reply"] == "Hola"

    def test_text_framing(self, relay_factory, transcripts):
        encoded = "Hola, soy José.".encode("utf-8")
        cut = encoded.index(b"\xc3") + 1
        backend = FakeBackend([encoded[:cut], encoded[cut:]], framing="text")
        assert "".join(relay_factory(backend).stream("x")) == "Hola, soy José."
        assert transcripts.query_transcripts()[0]["reply"] == "Hola, soy José."


class TestHistory:
    def test_previous_exchange_sent_upstream(self, relay, backend):
        list(relay.stream("primera", "s1"))
        list(relay.stream("segunda", "s1"))

        messages = backend.calls[1]["messages"]
        assert [m["role"] for m in messages] == ["system", "user", "assistant", "user"]
        assert messages[1]["content"] == "primera"
        assert messages[2]["content"] == "Hola, soy José."
        assert messages[3]["content"] == "segunda"

    def test_other_sessions_not_included(self, relay, backend):
        list(relay.stream("primera", "s1"))
        list(relay.stream("segunda", "s2"))
        assert len(backend.calls[1]["messages"]) == 2

    def test_anonymous_has_no_history(self, relay, backend):
        list(relay.stream("primera"))
        list(relay.stream("segunda"))
        assert len(backend.calls[1]["messages"]) == 2

    def test_history_window(self, relay_factory, backend):
        relay = relay_factory(backend, history_turns=1)
        for prompt in ["uno", "dos", "tres"]:
            list(relay.stream(prompt, "s1"))
        messages = backend.calls[2]["messages"]
        assert [m["content"] for m in messages if m["role"] == "user"] == ["dos", "tres"]


class TestCanned:
    def test_alert_prompt_skips_model(self, relay_factory, backend, dispatcher, transcripts):
        sleeps = []
        relay = relay_factory(backend, dispatcher, sleep=sleeps.append)

        increments = list(relay.stream("¿Quién eres?", "s1"))

        assert backend.calls == []
        assert "".join(increments) == RELAY_CONFIG["CANNED_BIO"]
        assert len(sleeps) == len(increments) - 1
        assert dispatcher.sent == [("Consulta sobre el perfil", "Un visitante preguntó: ¿Quién eres?")]

        rows = transcripts.query_transcripts()
        assert rows[0]["source"] == "canned"
        assert rows[0]["reply"] == RELAY_CONFIG["CANNED_BIO"]

    def test_notification_failure_still_answers(self, relay_factory, backend, failing_dispatcher):
        relay = relay_factory(backend, failing_dispatcher)
        assert "".join(relay.stream("quien eres")) == RELAY_CONFIG["CANNED_BIO"]

    def test_disabled_without_canned_reply(self, relay_factory, backend):
        relay = relay_factory(backend, canned_reply="")
        list(relay.stream("quien eres"))
        assert len(backend.calls) == 1


class TestComplete:
    def test_returns_text_and_source(self, relay):
        assert relay.complete("x", "s1") == ("Hola, soy José.", Source.MODEL)

    def test_error_source(self, relay_factory, unreachable):
        text, source = relay_factory(FakeBackend(failures=[unreachable] * 3)).complete("x")
        assert source == Source.ERROR
        assert text.startswith(CONNECT_ERROR_MESSAGE)
        assert " Detalle técnico:" in text

    def test_canned_source(self, relay):
        assert relay.complete("quien eres")[1] == Source.CANNED

    def test_canned_reply_not_paced(self, relay_factory, backend):
        sleeps = []
        relay = relay_factory(backend, sleep=sleeps.append, canned_delay=0.05)
        assert relay.complete("quien eres") == (RELAY_CONFIG["CANNED_BIO"], Source.CANNED)
        assert sleeps == []

    def test_stuck_model_process_is_recorded(self, relay_factory, transcripts):
        backend = FakeBackend([b"Hola"], break_with=UpstreamError("llama-cli did not exit within 5s"), framing="text")
        text, source = relay_factory(backend).complete("x", "s1")
        assert source == Source.ERROR
        assert text == f"Hola {INTERRUPTED_MESSAGE}"
        rows = transcripts.query_transcripts()
        assert len(rows) == 1
        assert rows[0]["source"] == "error"
