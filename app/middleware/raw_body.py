"""Raw body capture for Stripe webhooks.

Stripe signs the exact request bytes, so the webhook must see the body
before anything parses or re-encodes it.

- RawBodyMiddleware: WSGI wrapper that buffers the body of POSTs to the
  webhook path into environ["webhook.raw_body"] and rewinds wsgi.input.
- select_raw_payload(): picks the best available representation of the
  signed bytes, in order of trust.
- extract_raw_payload(): the same, read from a Flask request.
"""

import io
import json
import logging
from dataclasses import dataclass

from werkzeug.wsgi import get_input_stream

logger = logging.getLogger(__name__)

RAW_BODY_ENVIRON_KEY = "webhook.raw_body"


class RawBodyMiddleware:
    """Buffer the raw request body for the given paths.

    Installed around app.wsgi_app in create_app(), which puts it upstream
    of every Flask/Werkzeug body parser.
    """

    def __init__(self, wsgi_app, paths):
        self.wsgi_app = wsgi_app
        self.paths = set(paths)

    def __call__(self, environ, start_response):
        if (
            environ.get("REQUEST_METHOD") == "POST"
            and environ.get("PATH_INFO") in self.paths
        ):
            body = get_input_stream(environ).read()
            environ[RAW_BODY_ENVIRON_KEY] = body
            environ["wsgi.input"] = io.BytesIO(body)
            environ["CONTENT_LENGTH"] = str(len(body))
        return self.wsgi_app(environ, start_response)


@dataclass(frozen=True)
class RawPayload:
    data: bytes
    source: str
    degraded: bool = False


def select_raw_payload(raw_body=None, body=None):
    """Pick the bytes to verify, most trustworthy first.

    1. raw_body as bytes      (captured by RawBodyMiddleware)
    2. raw_body as str        (re-encoded as UTF-8)
    3. body as bytes
    4. body as str            (re-encoded as UTF-8)
    5. body already parsed    (re-serialized JSON, degraded: the signature
                               will almost certainly not match)
    """
    if isinstance(raw_body, (bytes, bytearray, memoryview)):
        return RawPayload(bytes(raw_body), "raw_body")
    if isinstance(raw_body, str):
        return RawPayload(raw_body.encode("utf-8"), "raw_body_str")
    if isinstance(body, (bytes, bytearray, memoryview)) and len(body):
        return RawPayload(bytes(body), "body")
    if isinstance(body, str) and body:
        return RawPayload(body.encode("utf-8"), "body_str")

    if body is None or body == b"" or body == "":
        logger.error("Webhook request has no body to verify")
        return RawPayload(b"", "empty", degraded=True)

    serialized = json.dumps(body, separators=(",", ":"), ensure_ascii=False)
    logger.error(
        "Webhook raw body unavailable, re-serialized parsed JSON "
        f"({len(serialized)} chars), signature verification will likely fail"
    )
    return RawPayload(serialized.encode("utf-8"), "parsed_json", degraded=True)


def extract_raw_payload(request):
    """Read the signed bytes from a Flask request."""
    raw_body = request.environ.get(RAW_BODY_ENVIRON_KEY)
    body = request.get_data(cache=True)
    if not body and raw_body is None:
        body = request.get_json(silent=True, cache=True)
    payload = select_raw_payload(raw_body, body)
    if not payload.degraded:
        logger.debug(f"Webhook payload from {payload.source} ({len(payload.data)} bytes)")
    return payload
