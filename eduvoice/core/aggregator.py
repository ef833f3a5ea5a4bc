"""
Result aggregation.

Turns the winning provider output into a validated schema instance.
Aggregation is all-or-nothing: callers get a complete, in-bounds result or
NoValidOutput, never a partially populated object.
"""

import json
from typing import Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from eduvoice.observability import get_logger

from .errors import EduVoiceError
from .sequencer import ProviderAttemptResult

logger = get_logger(__name__)

T = TypeVar("T", bound=BaseModel)


class NoValidOutput(EduVoiceError):
    """No credential produced a usable result.

    Distinct from provider failures: the call went through but the output
    was missing, malformed or semantically empty.
    """
    def __init__(self, message: str, source_label: Optional[str] = None):
        super().__init__(message)
        self.source_label = source_label


def finalize(result: ProviderAttemptResult, schema: Type[T]) -> T:
    """Validate a provider result against the expected schema.

    Args:
        result: Sequencer outcome
        schema: Pydantic model the output must satisfy

    Returns:
        Validated schema instance

    Raises:
        NoValidOutput: If the attempt failed or the output does not validate
    """
    if not result.succeeded:
        raise NoValidOutput(
            f"No credential produced {schema.__name__} output "
            f"after {result.attempts} attempt(s)"
        )

    output = result.output
    if output is None:
        raise NoValidOutput(
            f"Provider returned no {schema.__name__} output",
            result.source_label
        )

    try:
        if isinstance(output, schema):
            return schema.model_validate(output.model_dump())
        if isinstance(output, (str, bytes, bytearray)):
            return schema.model_validate_json(output)
        return schema.model_validate(output)
    except (ValidationError, json.JSONDecodeError, TypeError) as exc:
        logger.warning(
            "invalid_provider_output",
            schema=schema.__name__,
            source=result.source_label,
            error=str(exc)
        )
        raise NoValidOutput(
            f"Provider output is not a valid {schema.__name__}: {exc}",
            result.source_label
        ) from exc
