"""Error taxonomy for identity resolution and link activation.

Every error carries the label, HTTP status, details and hint used by the API
layer to build its error envelope. Configuration errors abort a resolution;
data errors only eliminate the candidate they were raised for.
"""

from __future__ import annotations


class WebhookIdentityError(Exception):
    """Base class for identity-layer errors."""

    error = "Internal Server Error"
    status_code = 500

    def __init__(self, details: str, hint: str | None = None) -> None:
        super().__init__(details)
        self.details = details
        self.hint = hint

    def to_dict(self) -> dict[str, object]:
        body: dict[str, object] = {
            "success": False,
            "error": self.error,
            "details": self.details,
        }
        if self.hint:
            body["hint"] = self.hint
        return body


class BadRequestError(WebhookIdentityError):
    """The payload is missing data the definition requires."""

    error = "Bad Request"
    status_code = 400


class WebhookConfigurationError(WebhookIdentityError):
    """A stored definition is malformed (operator-facing)."""

    error = "Webhook Configuration Error"
    status_code = 500


class LinkForbiddenError(WebhookIdentityError):
    """A user link matched but is not active."""

    error = "Forbidden"
    status_code = 403


class NotFoundError(WebhookIdentityError):
    """No definition, matching link, or agent link."""

    error = "Not Found"
    status_code = 404


class HashKeyMissingError(WebhookIdentityError):
    """The process-wide identifier hashing key is not configured."""

    pass


class SecretStoreMismatchError(WebhookIdentityError):
    """The secret store reported a secret as present but returned no value."""

    pass


class SecretStoreError(WebhookIdentityError):
    """A secret store call failed."""

    error = "Secret Store Error"
    status_code = 502
