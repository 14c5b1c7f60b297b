"""Exceptions raised by the checkout, payment and shipping services.

Routers let these propagate; ``storefront.main`` turns them into
``{"success": false, "message": ...}`` JSON responses.
"""


class ShopError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationFailed(ShopError):
    status_code = 400


class NotFound(ShopError):
    status_code = 404


class IllegalTransition(ShopError):
    status_code = 409


class SignatureInvalid(ShopError):
    status_code = 400


class UpstreamError(ShopError):
    """A payment gateway or courier call failed. ``message`` is the upstream text."""

    status_code = 502


class Unauthorized(ShopError):
    status_code = 403
