"""
Error taxonomy - every failure carries the HTTP status it maps to and a short reason
"""


class ProxyError(Exception):
    """Base class for failures that end a proxy request with a status code."""

    status_code = 500

    def __init__(self, reason):
        self.reason = reason
        super().__init__(reason)


class ValidationError(ProxyError):
    status_code = 400


class MissingURLError(ValidationError):
    def __init__(self, reason="Missing ?url parameter"):
        super().__init__(reason)


class DecodingError(ValidationError):
    pass


class InvalidProtocolError(ValidationError):
    pass


class MalformedURLError(ValidationError):
    pass


class ForbiddenError(ProxyError):
    status_code = 403


class BlockedHostError(ForbiddenError):
    def __init__(self, host, reason):
        self.host = host
        super().__init__(f"Blocked host {host}: {reason}")


class DisallowedContentTypeError(ForbiddenError):
    def __init__(self, content_type):
        self.content_type = content_type
        super().__init__(f"Content type not allowed: {content_type}")


class MethodNotAllowedError(ProxyError):
    status_code = 405

    def __init__(self, method):
        self.method = method
        super().__init__(f"Method {method} not allowed")


class PayloadTooLargeError(ProxyError):
    status_code = 413

    def __init__(self, size, limit):
        self.size = size
        self.limit = limit
        super().__init__(f"Upstream response too large: {size} bytes (limit: {limit})")


class UpstreamError(ProxyError):
    status_code = 500


class UpstreamTimeoutError(UpstreamError):
    """The upstream fetch ran past its wall-clock deadline."""

    status_code = 504

    def __init__(self, reason="Request timeout"):
        super().__init__(reason)
