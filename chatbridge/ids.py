"""Identifier generation for completions, tool calls and requests."""

import uuid
from typing import Callable, Optional


def _random_token() -> str:
    return uuid.uuid4().hex


class IdGenerator:
    """Produces prefixed identifiers from an injectable token source.

    Tests pass a deterministic ``token_factory`` so emitted ids can be
    asserted on.
    """

    def __init__(self, token_factory: Optional[Callable[[], str]] = None) -> None:
        self._token = token_factory or _random_token

    def completion_id(self) -> str:
        return "chatcmpl-{}".format(self._token())

    def call_id(self) -> str:
        return "call_{}".format(self._token()[:24])

    def request_id(self) -> str:
        return "req-{}".format(self._token()[:12])
