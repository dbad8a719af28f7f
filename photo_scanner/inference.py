from __future__ import annotations

import base64
import logging
import time
from typing import Any, Sequence

import httpx

from .config import ScannerConfig
from .errors import InferenceRejected, InferenceUnavailable, RetryExhausted
from .models import Description
from .retry import RetryPolicy
from .utils import single_line, utc_now_iso

logger = logging.getLogger(__name__)

DESCRIPTION_INSTRUCTIONS = (
    "You are a traveler immersed in the world around you. Describe the scene with attention to "
    "cultural, geographical, and sensory details. Offer personal insights that reveal the atmosphere, "
    "local traditions, and unique experiences of the place."
)

DESCRIPTION_RULES = (
    "Keep the description concise and engaging, 2-3 sentences.",
    "Be confident; do not use words like 'likely' or 'perhaps'.",
    "Do not refer to the image explicitly. Avoid phrases such as 'This image shows', "
    "'In this photo' or 'This scene'; describe the essence of the scene directly.",
)

ANSWER_INSTRUCTIONS = "You are a helpful assistant answering the question using the provided options."

RETRYABLE_STATUS = frozenset({408, 425, 429})


class TransientHTTPError(Exception):
    def __init__(self, status_code: int, body: str):
        super().__init__(f"HTTP {status_code}: {body[:200]}")
        self.status_code = status_code


def is_transient(exc: BaseException) -> bool:
    if isinstance(exc, TransientHTTPError):
        return True
    # A bad URL or a malformed request fails the same way on every attempt.
    if isinstance(exc, (httpx.UnsupportedProtocol, httpx.LocalProtocolError)):
        return False
    return isinstance(exc, (httpx.TimeoutException, httpx.TransportError))


def build_description_messages(
    image_b64: str,
    *,
    persons: Sequence[str] = (),
    folder_name: str | None = None,
    location: str | None = None,
) -> list[dict[str, Any]]:
    messages: list[dict[str, Any]] = [
        {"role": "user", "content": DESCRIPTION_INSTRUCTIONS},
        {
            "role": "user",
            "content": [
                {"type": "text", "text": "The photo: "},
                {
                    "type": "image_url",
                    "image_url": {"url": f"data:image/jpeg;base64,{image_b64}", "detail": "high"},
                },
            ],
        },
    ]
    messages.extend({"role": "user", "content": rule} for rule in DESCRIPTION_RULES)

    if persons:
        messages.append(
            {
                "role": "user",
                "content": f"Use the person(s) {', '.join(persons)} as a hint for who is in the photo.",
            }
        )
    if folder_name:
        messages.append(
            {
                "role": "user",
                "content": f"Use the folder name {folder_name} as a hint for where the photo was taken.",
            }
        )
    if location:
        messages.append(
            {
                "role": "user",
                "content": f"The photo was taken at GPS position {location}.",
            }
        )
    return messages


def assistant_text(payload: dict[str, Any]) -> str:
    parts = []
    for choice in payload.get("choices") or []:
        message = choice.get("message") or {}
        if message.get("role", "assistant") != "assistant":
            continue
        content = message.get("content")
        if isinstance(content, str) and content.strip():
            parts.append(content.strip())
    return " ".join(parts)


class InferenceClient:
    """Facade over an OpenAI-compatible chat/embeddings backend.

    Holds no per-call state; the underlying httpx.Client pools connections and
    is safe to share between worker threads.
    """

    def __init__(
        self,
        cfg: ScannerConfig,
        *,
        retry: RetryPolicy | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        self.cfg = cfg
        self.retry = retry or RetryPolicy.from_config(cfg)
        headers = {"Authorization": f"Bearer {cfg.api_key}"} if cfg.api_key else {}
        self.http = httpx.Client(
            base_url=cfg.api_base.rstrip("/") + "/",
            headers=headers,
            timeout=httpx.Timeout(cfg.request_timeout, connect=cfg.connect_timeout),
            limits=httpx.Limits(max_connections=max(4, cfg.concurrency * 2), max_keepalive_connections=cfg.concurrency),
            transport=transport,
        )

    def close(self) -> None:
        self.http.close()

    def __enter__(self) -> "InferenceClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def describe(
        self,
        image_bytes: bytes,
        *,
        persons: Sequence[str] = (),
        folder_name: str | None = None,
        location: str | None = None,
    ) -> Description:
        if not image_bytes:
            raise InferenceRejected("empty image payload")

        image_b64 = base64.b64encode(image_bytes).decode("ascii")
        request = {
            "model": self.cfg.vision_model,
            "max_tokens": self.cfg.description_max_tokens,
            "messages": build_description_messages(
                image_b64, persons=persons, folder_name=folder_name, location=location
            ),
        }

        start = time.monotonic()
        response = self._post("chat/completions", request)
        text = single_line(assistant_text(response))
        if not text:
            raise InferenceRejected("backend returned an empty description")

        return Description(
            text=text,
            model=str(response.get("model") or self.cfg.vision_model),
            duration_seconds=round(time.monotonic() - start, 3),
            created_at=utc_now_iso(),
        )

    def embed(self, text: str) -> list[float]:
        if not text or not text.strip():
            raise InferenceRejected("cannot embed empty text")

        response = self._post("embeddings", {"model": self.cfg.embedding_model, "input": [text]})
        try:
            vector = response["data"][0]["embedding"]
            return [float(x) for x in vector]
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise InferenceRejected(f"malformed embedding response: {exc}") from exc

    def answer(self, question: str, options: Sequence[str]) -> str:
        request = {
            "model": self.cfg.chat_model,
            "max_tokens": self.cfg.description_max_tokens,
            "temperature": 0.2,
            "messages": [
                {"role": "system", "content": ANSWER_INSTRUCTIONS},
                {"role": "user", "content": f"Question: {question}\nOptions:\n" + "\n".join(options)},
            ],
        }
        return assistant_text(self._post("chat/completions", request))

    def _post(self, endpoint: str, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            return self.retry.call(
                lambda: self._post_once(endpoint, payload),
                is_retryable=is_transient,
                label=endpoint,
            )
        except RetryExhausted as exc:
            raise InferenceUnavailable(f"{endpoint} unavailable: {exc}") from exc
        except httpx.HTTPError as exc:
            raise InferenceRejected(f"{endpoint} request failed: {type(exc).__name__}: {exc}") from exc

    def _post_once(self, endpoint: str, payload: dict[str, Any]) -> dict[str, Any]:
        logger.debug("POST %s model=%s", endpoint, payload.get("model"))
        response = self.http.post(endpoint, json=payload)
        status = response.status_code
        if status in RETRYABLE_STATUS or status >= 500:
            raise TransientHTTPError(status, response.text)
        if status >= 400:
            raise InferenceRejected(f"{endpoint} rejected the request: HTTP {status}: {response.text[:200]}")
        try:
            body = response.json()
        except ValueError as exc:
            raise InferenceRejected(f"{endpoint} returned invalid JSON") from exc
        if not isinstance(body, dict):
            raise InferenceRejected(f"{endpoint} returned unexpected payload")
        return body
