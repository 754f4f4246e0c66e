class ThesisFlowError(Exception):
    """Base exception for ThesisFlow.

    Carries a human-readable message, the HTTP status it maps to, a stable
    machine-readable code, and optional context (transaction ids, section
    names) for manual support reconciliation.
    """

    status_code = 400
    code = "thesisflow_error"

    def __init__(self, message: str, context: dict | None = None):
        self.message = message
        self.context = context or {}
        super().__init__(message)


class ValidationError(ThesisFlowError):
    """Raised when user input is incomplete (lead fields, feedback, title)."""

    status_code = 422
    code = "validation_error"


class InvalidTransition(ThesisFlowError):
    """Raised when an event is not allowed in the current funnel step."""

    status_code = 409
    code = "invalid_transition"

    def __init__(self, step: str, event: str, reason: str = ""):
        self.step = step
        self.event = event
        message = f"Event '{event}' is not allowed at step '{step}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, {"step": step, "event": event})


class AccessDenied(ThesisFlowError):
    """Raised when acting on a section without an active paid subscription."""

    status_code = 402
    code = "access_denied"


class SectionLocked(ThesisFlowError):
    """Raised when the previous section has not been completed yet."""

    status_code = 409
    code = "section_locked"


class QuotaExhausted(ThesisFlowError):
    """Raised when a section has no revisions left. Route to the top-up flow."""

    status_code = 402
    code = "quota_exhausted"


class GenerationInProgress(ThesisFlowError):
    """Raised when a request is already in flight for the same section."""

    status_code = 409
    code = "generation_in_progress"


class ContentProviderError(ThesisFlowError):
    """Base for failures reported by the content generation provider."""

    status_code = 502
    code = "content_provider_error"


class ProviderError(ContentProviderError):
    """Provider returned an error, timed out, or produced no text."""


class RateLimited(ContentProviderError):
    """Provider rejected the request because of rate limiting."""

    status_code = 429
    code = "rate_limited"


class InvalidConfig(ContentProviderError):
    """Provider is not configured (missing or rejected API key)."""

    status_code = 503
    code = "invalid_config"


class PaymentGatewayError(ThesisFlowError):
    """Base for failures reported by the payment gateway."""

    status_code = 502
    code = "payment_gateway_error"


class PaymentConfigError(PaymentGatewayError):
    """Gateway is not configured for this environment. Recoverable via simulation."""

    status_code = 503
    code = "payment_config_error"


class GatewayError(PaymentGatewayError):
    """Gateway rejected the transaction or could not be reached."""

    code = "gateway_error"


class PersistenceError(ThesisFlowError):
    """Raised when the durable store rejects a write."""

    status_code = 500
    code = "persistence_error"
