"""Exception hierarchy for agentpad provider and infrastructure errors.

Service-level errors (validation, not-found, conflicts) live next to the
services that raise them.
"""


class AgentpadError(Exception):
    """Base exception for all agentpad errors."""

    pass


class ConfigurationError(AgentpadError):
    """Configuration problem with optional remediation guidance.

    Attributes:
        message: Error message describing what went wrong
        remediation: Optional guidance on how to fix the issue
    """

    def __init__(self, message: str, remediation: str | None = None):
        super().__init__(message)
        self.remediation = remediation

    def __str__(self) -> str:
        """Return formatted error message with remediation if available."""
        if self.remediation:
            return f"{self.args[0]}\n\nRemediation: {self.remediation}"
        return str(self.args[0])


class MissingAPIKeyError(ConfigurationError):
    """No API key configured for the inference provider."""

    code = "missing_api_key (set AI_API_KEY)"

    def __init__(self, message: str = "AI_API_KEY not found"):
        super().__init__(
            message=message,
            remediation=(
                "Set it via:\n"
                "  1. Environment variable: export AI_API_KEY=your-key\n"
                "  2. Keychain: agentpad set-key\n"
                "  3. .env file: echo 'AI_API_KEY=your-key' > .env"
            ),
        )


class ProviderError(AgentpadError):
    """An inference provider call failed.

    The message is reported verbatim as the run's error.
    """

    pass


class ProviderUnavailableError(ProviderError):
    """The configured provider cannot be used.

    Attributes:
        provider: Provider key as configured
        code: Machine-readable error code returned to callers
    """

    def __init__(self, provider: str, reason: str | None = None):
        if reason is None:
            code = f"unsupported_ai_api_type:{provider}"
        else:
            code = f"provider_unavailable:{provider} ({reason})"
        super().__init__(code)
        self.provider = provider
        self.code = code


class AttachmentError(AgentpadError):
    """A file attachment could not be resolved or read.

    Attributes:
        reason: Short machine-readable reason (e.g. ``file_not_found``)
    """

    def __init__(self, reason: str):
        super().__init__(f"file_attachment_error:{reason}")
        self.reason = reason
