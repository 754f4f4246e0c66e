"""Content Provider Gateway: the seam between the orchestrator and the LLM.

- ContentGateway: protocol every implementation satisfies
- AnthropicContentGateway: production implementation (Anthropic Messages API)
- ContentGatewayFake: scenario-based deterministic double for dev and tests

Every provider failure surfaces as a typed ContentProviderError subclass;
transport timeouts included.
"""

from typing import Any, Protocol, runtime_checkable

import anthropic
import structlog
from anthropic._exceptions import OverloadedError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from thesisflow.core.exceptions import InvalidConfig, ProviderError, RateLimited
from thesisflow.domain.sections import SECTION_LABELS
from thesisflow.integrations.prompts import GenerationKind, GenerationRequest, build_prompt

logger = structlog.get_logger(__name__)


@runtime_checkable
class ContentGateway(Protocol):
    async def generate(self, request: GenerationRequest) -> str:
        """Return generated text for ``request``.

        Raises:
            RateLimited: provider throttled the request
            InvalidConfig: provider is not configured or rejected the credentials
            ProviderError: any other provider or transport failure
        """
        ...


@retry(
    retry=retry_if_exception_type(OverloadedError),
    stop=stop_after_attempt(4),
    wait=wait_exponential(multiplier=2, min=2, max=30),
    reraise=True,
    before_sleep=lambda rs: logger.warning(
        "content_provider_overloaded_retrying",
        attempt=rs.attempt_number,
        sleep_seconds=rs.next_action.sleep,
    ),
)
async def _invoke_with_retry(client: Any, model: str, system: str, user: str, max_tokens: int) -> str:
    """Call messages.create(), retrying only on 529 overload."""
    response = await client.messages.create(
        model=model,
        system=system,
        messages=[{"role": "user", "content": user}],
        max_tokens=max_tokens,
    )
    return "".join(block.text for block in response.content if getattr(block, "type", "text") == "text")


class AnthropicContentGateway:
    """Content gateway backed by the Anthropic Messages API."""

    def __init__(self, api_key: str, model: str, timeout: float = 120.0, client: Any | None = None):
        self.model = model
        self._api_key = api_key
        self._client = client
        self._timeout = timeout

    def _get_client(self) -> Any:
        if self._client is None:
            if not self._api_key:
                raise InvalidConfig("Content provider API key is not configured")
            self._client = anthropic.AsyncAnthropic(api_key=self._api_key, timeout=self._timeout)
        return self._client

    async def generate(self, request: GenerationRequest) -> str:
        prompt = build_prompt(request)
        client = self._get_client()
        section = request.section.value if request.section else None

        try:
            text = await _invoke_with_retry(client, self.model, prompt.system, prompt.user, prompt.max_tokens)
        except anthropic.RateLimitError as exc:
            logger.warning("content_provider_rate_limited", kind=request.kind.value, section=section)
            raise RateLimited("The writing assistant is busy. Please try again shortly.") from exc
        except (anthropic.AuthenticationError, anthropic.PermissionDeniedError) as exc:
            logger.error("content_provider_auth_failed", kind=request.kind.value, error=str(exc))
            raise InvalidConfig("Content provider credentials were rejected") from exc
        except anthropic.APITimeoutError as exc:
            logger.warning("content_provider_timeout", kind=request.kind.value, section=section)
            raise ProviderError("The writing assistant timed out. Please try again.") from exc
        except anthropic.APIError as exc:
            logger.error(
                "content_provider_error",
                kind=request.kind.value,
                section=section,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise ProviderError(f"Content generation failed: {exc}") from exc

        if not text.strip():
            raise ProviderError("Content provider returned an empty response")

        logger.info("content_generated", kind=request.kind.value, section=section, chars=len(text))
        return text


class ContentGatewayFake:
    """Scenario-based test double for ContentGateway.

    Returns instantly with deterministic text. Every request is recorded in
    ``calls`` so tests can assert on network usage.
    """

    VALID_SCENARIOS = {"happy_path", "provider_error", "rate_limited", "invalid_config"}

    def __init__(self, scenario: str = "happy_path"):
        if scenario not in self.VALID_SCENARIOS:
            raise ValueError(f"Unknown scenario: {scenario}. Valid scenarios: {self.VALID_SCENARIOS}")
        self.scenario = scenario
        self.calls: list[GenerationRequest] = []

    async def generate(self, request: GenerationRequest) -> str:
        self.calls.append(request)

        if self.scenario == "provider_error":
            raise ProviderError("Content provider returned HTTP 500")
        if self.scenario == "rate_limited":
            raise RateLimited("Content provider rate limit exceeded. Retry after 60 seconds.")
        if self.scenario == "invalid_config":
            raise InvalidConfig("Content provider API key is not configured")

        if request.kind == GenerationKind.TITLE_IDEATION:
            department = request.subject.department
            return "\n".join(
                f"{i}. Analysis of Approach {i} for {department} Systems"
                for i in range(1, request.candidate_count + 1)
            )

        label = SECTION_LABELS[request.section]
        if request.kind == GenerationKind.SECTION_GENERATION:
            return (
                f"{label}\n\n"
                f"This section of '{request.subject.title}' builds on prior work (Smith, 2021) "
                f"and extends the framework proposed earlier (Chen & Wang, 2019)."
            )

        preserved = " ".join(request.preserve)
        return f"{label} (revised)\n\n{request.feedback}\n\n{preserved}".rstrip()
