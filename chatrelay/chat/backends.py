"""
Upstream text generators.

Both backends expose the same call: ``open(messages, timeout)`` starts a
generation and returns a lazy iterator of raw byte fragments. Opening is the
part covered by the retry policy; once the iterator is handed back, errors
raised while reading it belong to that turn only.

``framing`` tells the relay how to read the bytes: ``"lines"`` for
newline-delimited JSON / SSE bodies, ``"text"`` for plain text.
"""

import logging
import subprocess
from typing import Dict, Iterator, List, Optional, Sequence

import requests

logger = logging.getLogger(__name__)

Message = Dict[str, str]


class UpstreamError(Exception):
    """The model backend could not produce a stream."""


class UpstreamHTTPError(UpstreamError):
    def __init__(self, status_code: int, body: str):
        super().__init__(f"HTTP {status_code}: {body}")
        self.status_code = status_code
        self.body = body


def render_prompt(messages: Sequence[Message]) -> str:
    """Flatten a message list into the plain prompt llama.cpp expects."""
    lines: List[str] = []
    for message in messages:
        role = message["role"]
        if role == "system":
            lines.append(message["content"].strip())
        elif role == "user":
            lines.append(f"Usuario: {message['content']}")
        else:
            lines.append(f"Asistente: {message['content']}")
    lines.append("Asistente:")
    return "\n".join(lines)


class HttpBackend:
    framing = "lines"

    def __init__(
        self,
        api_url: str,
        payload_style: str = "completion",
        model: Optional[str] = None,
        temperature: float = 0.7,
        n_predict: int = 200,
        session: Optional[requests.Session] = None,
    ):
        self.api_url = api_url
        self.payload_style = payload_style
        self.model = model
        self.temperature = temperature
        self.n_predict = n_predict
        self.session = session or requests.Session()

    def __repr__(self):
        return f"HttpBackend({self.api_url!r}, {self.payload_style!r})"

    def build_payload(self, messages: Sequence[Message]) -> dict:
        if self.payload_style == "chat":
            payload = {
                "messages": list(messages),
                "stream": True,
                "temperature": self.temperature,
            }
            if self.model:
                payload["model"] = self.model
            return payload

        return {
            "prompt": render_prompt(messages),
            "stream": True,
            "temperature": self.temperature,
            "n_predict": self.n_predict,
        }

    def open(self, messages: Sequence[Message], timeout: float) -> Iterator[bytes]:
        response = self.session.post(
            self.api_url,
            json=self.build_payload(messages),
            stream=True,
            timeout=timeout,
        )
        if not response.ok:
            body = response.text
            response.close()
            raise UpstreamHTTPError(response.status_code, body)
        return self._iter_body(response)

    @staticmethod
    def _iter_body(response: requests.Response) -> Iterator[bytes]:
        try:
            for chunk in response.iter_content(chunk_size=None):
                if chunk:
                    yield chunk
        finally:
            response.close()


class SubprocessBackend:
    framing = "text"

    def __init__(
        self,
        binary: str,
        model_path: str,
        n_predict: int = 200,
        threads: int = 4,
        extra_args: Sequence[str] = (),
    ):
        self.binary = binary
        self.model_path = model_path
        self.n_predict = n_predict
        self.threads = threads
        self.extra_args = list(extra_args)

    def __repr__(self):
        return f"SubprocessBackend({self.binary!r})"

    def build_command(self, messages: Sequence[Message]) -> List[str]:
        return [
            self.binary,
            "--model", self.model_path,
            "--prompt", render_prompt(messages),
            "--n-predict", str(self.n_predict),
            "--threads", str(self.threads),
            *self.extra_args,
        ]

    def open(self, messages: Sequence[Message], timeout: float) -> Iterator[bytes]:
        process = subprocess.Popen(
            self.build_command(messages),
            stdout=subprocess.PIPE,
            stderr=subprocess.DEVNULL,
        )
        return self._iter_stdout(process, timeout)

    @staticmethod
    def _iter_stdout(process: subprocess.Popen, timeout: float) -> Iterator[bytes]:
        try:
            for chunk in iter(lambda: process.stdout.read1(4096), b""):
                yield chunk
            try:
                returncode = process.wait(timeout=timeout)
            except subprocess.TimeoutExpired as e:
                raise UpstreamError(f"{process.args[0]} did not exit within {timeout}s") from e
            if returncode != 0:
                raise UpstreamError(f"{process.args[0]} exited with status {returncode}")
        finally:
            if process.poll() is None:
                logger.debug("Killing unfinished model process %s", process.pid)
                process.kill()
                process.wait()
            process.stdout.close()


def build_backend(config: dict):
    """Pick the backend named in ``MODEL_CONFIG``."""
    if config["BACKEND"] == "subprocess":
        return SubprocessBackend(
            binary=config["BINARY"],
            model_path=config["MODEL_PATH"],
            n_predict=config["N_PREDICT"],
            threads=config["THREADS"],
            extra_args=config["EXTRA_ARGS"],
        )
    if config["BACKEND"] == "http":
        return HttpBackend(
            api_url=config["API_URL"],
            payload_style=config["PAYLOAD_STYLE"],
            model=config["MODEL"],
            temperature=config["TEMPERATURE"],
            n_predict=config["N_PREDICT"],
        )
    raise ValueError(f"Unknown model backend: {config['BACKEND']!r}")
