"""Error taxonomy for the chat-completions bridge.

Every failure the bridge reports to a caller is a ProxyError subclass. The
HTTP boundary renders them as ``{"error": {"message": ..., "type": ...}}``
using the class's error_type and status_code.
"""

from typing import Optional


class ProxyError(Exception):
    """Base class for errors surfaced to the caller."""

    error_type = "proxy_error"
    status_code = 500

    def __init__(self, detail: str, status_code: Optional[int] = None) -> None:
        self.detail = detail
        if status_code is not None:
            self.status_code = status_code
        super().__init__(detail)


class ConfigurationError(ProxyError):
    """A required endpoint or key is not configured."""

    error_type = "configuration_error"
    status_code = 500


class AuthenticationError(ProxyError):
    """The shared service key is missing or wrong."""

    error_type = "authentication_error"
    status_code = 401


class InvalidRequestError(ProxyError):
    """The caller payload carries no usable message content."""

    error_type = "invalid_request_error"
    status_code = 400


class TransformError(ProxyError):
    """A payload could not be transcoded.

    Response-side failures keep the default 500; request-side failures use
    RequestTransformError.
    """

    error_type = "transform_error"
    status_code = 500

    def __init__(self, detail: str) -> None:
        super().__init__("Transform error: {}".format(detail))


class RequestTransformError(TransformError):
    status_code = 400


class InvalidRequestFormat(RequestTransformError):
    """None of messages, role+content, input or content was supplied."""


class EmptyMessageSet(RequestTransformError):
    """Every message was filtered out during transcoding."""


class NoUsableInput(RequestTransformError):
    """No input item survived normalization for a GPT request."""


class UpstreamConnectionError(ProxyError):
    """The upstream could not be reached or timed out."""

    error_type = "connection_error"
    status_code = 503


class UpstreamAPIError(ProxyError):
    """The upstream answered with an error status; that status is relayed."""

    error_type = "api_error"

    def __init__(self, status_code: int, detail: str, body: Optional[object] = None) -> None:
        self.body = body
        super().__init__(detail, status_code=status_code)
