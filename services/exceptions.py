"""
Domain Errors

Error taxonomy for the bid comparison pipeline. The API layer maps these
to HTTP responses; workers record their messages on the project.
"""


class BidVetError(Exception):
    """Base class for pipeline errors."""

    code = "BIDVET_ERROR"

    def __init__(self, message: str = ""):
        self.message = message or self.__class__.__name__
        super().__init__(self.message)


# ============================================================================
# TEXT STAGE
# ============================================================================

class UnsupportedFormat(BidVetError):
    code = "UNSUPPORTED_FORMAT"


class SourceUnavailable(BidVetError):
    code = "SOURCE_UNAVAILABLE"


class ExtractionFailed(BidVetError):
    code = "EXTRACTION_FAILED"


# ============================================================================
# LLM STAGE
# ============================================================================

class LLMError(BidVetError):
    """Classified failure of an LLM call."""
    code = "UNKNOWN_ERROR"


class RateLimitError(LLMError):
    code = "RATE_LIMIT"


class TimeoutError(LLMError):
    code = "TIMEOUT"


class ParseError(LLMError):
    code = "PARSE_ERROR"


class AuthError(LLMError):
    code = "AUTH_ERROR"


class NetworkError(LLMError):
    code = "NETWORK_ERROR"


class QuotaError(LLMError):
    code = "QUOTA_ERROR"


class UnknownLLMError(LLMError):
    code = "UNKNOWN_ERROR"


# ============================================================================
# LEDGER / API STAGE
# ============================================================================

class NotFound(BidVetError):
    code = "NOT_FOUND"


class Forbidden(BidVetError):
    code = "FORBIDDEN"


class ValidationError(BidVetError):
    code = "VALIDATION_ERROR"


class ConflictError(BidVetError):
    code = "CONFLICT"


def classify_llm_error(error: Exception) -> LLMError:
    """
    Map a raw provider/SDK failure onto the LLM error taxonomy by its message.

    Args:
        error: Exception raised by the LLM call

    Returns:
        The matching LLMError subclass instance (original message kept)
    """
    if isinstance(error, LLMError):
        return error

    message = str(error) or error.__class__.__name__
    lowered = message.lower()

    if "rate limit" in lowered or "rate_limit" in lowered or "429" in lowered:
        return RateLimitError(message)
    if "timeout" in lowered or "timed out" in lowered:
        return TimeoutError(message)
    if "invalid" in lowered or "parse" in lowered:
        return ParseError(message)
    if "authentication" in lowered or "unauthorized" in lowered or "401" in lowered:
        return AuthError(message)
    if "network" in lowered or "connection" in lowered or "fetch" in lowered:
        return NetworkError(message)
    if "quota" in lowered or "insufficient" in lowered:
        return QuotaError(message)
    return UnknownLLMError(message)
