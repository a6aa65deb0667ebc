"""
Inbound hook request handling.

Helpers used by the API server to authorize a hook request and to work out
the notification message. Dispatch happens in the engine.
"""

from __future__ import annotations

import base64
import hmac
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Mapping

    from quick_watch.config import HookAuth, HookConfig

DEFAULT_HOOK_MESSAGE = "hook triggered"


def method_allowed(hook: HookConfig, method: str) -> bool:
    allowed = [m.upper() for m in hook.methods] or ["POST"]
    return method.upper() in allowed


def is_authorized(auth: HookAuth, authorization: str | None) -> bool:
    """
    Check an Authorization header against a hook's credentials.

    Hooks without credentials accept every request. A bearer token and
    basic credentials may both be configured; either one is enough.
    """
    if not auth.required:
        return True
    if not authorization:
        return False

    scheme, _, value = authorization.partition(" ")
    scheme = scheme.lower()
    value = value.strip()

    if scheme == "bearer" and auth.bearer_token:
        return _same(value, auth.bearer_token)

    if scheme == "basic" and auth.username:
        try:
            decoded = base64.b64decode(value, validate=True).decode("utf-8")
        except ValueError:
            # binascii.Error, UnicodeDecodeError and non-ASCII input
            return False
        username, _, password = decoded.partition(":")
        return _same(username, auth.username) and _same(password, auth.password)

    return False


def _same(given: str, expected: str) -> bool:
    # compare_digest only accepts ASCII str; header values may be latin-1
    return hmac.compare_digest(given.encode("utf-8"), expected.encode("utf-8"))


def resolve_message(
    hook: HookConfig,
    query: Mapping[str, str],
    body: Mapping[str, Any] | None,
) -> str:
    """
    Pick the notification text.

    Precedence: query ``msg``, body ``msg``, the hook's configured message,
    then a generic default.
    """
    if query.get("msg"):
        return query["msg"]
    if body and isinstance(body.get("msg"), str) and body["msg"]:
        return body["msg"]
    return hook.message or DEFAULT_HOOK_MESSAGE
