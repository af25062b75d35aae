"""
SecretValue — an opaque wrapper for credential strings.

API tokens, admin tokens and database passwords travel through the
environment record, the step context and the rendered templates.
Wrapping them here means the default textual conversion of a secret is
always the redaction marker: a stray ``logger.info("%s", token)`` or an
f-string in an error message cannot leak the content.

The raw value is reachable only through ``reveal()``, which callers use
at the point of use (rendering a template, building an auth header).

Serialization:
    - ``model_dump()`` → the ``SecretValue`` itself (still redacted as text)
    - ``model_dump(mode="json")`` / ``model_dump_json()`` → ``[REDACTED]``
    - ``model_dump(mode="json", context={"reveal_secrets": True})``
      → raw value (only the environment store does this, to persist)
"""

from __future__ import annotations

from typing import Any

from pydantic import GetCoreSchemaHandler
from pydantic_core import core_schema

REDACTED = "[REDACTED]"

# Serialization context key that unlocks the raw value.
REVEAL_CONTEXT_KEY = "reveal_secrets"


class SecretValue:
    """A sensitive string whose textual forms are always redacted."""

    __slots__ = ("_value",)

    def __init__(self, value: str):
        if isinstance(value, SecretValue):
            value = value.reveal()
        if not isinstance(value, str):
            raise TypeError(f"SecretValue expects a str, got {type(value).__name__}")
        self._value = value

    def reveal(self) -> str:
        """Return the raw value. Never log the result."""
        return self._value

    # ── Textual forms: always the marker ────────────────────────

    def __str__(self) -> str:
        return REDACTED

    def __repr__(self) -> str:
        return f"SecretValue('{REDACTED}')"

    def __format__(self, format_spec: str) -> str:
        return format(REDACTED, format_spec)

    # ── Equality / ordering / hashing ───────────────────────────

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SecretValue):
            return NotImplemented
        return self._value == other._value

    def __lt__(self, other: SecretValue) -> bool:
        if not isinstance(other, SecretValue):
            return NotImplemented
        return self._value < other._value

    def __le__(self, other: SecretValue) -> bool:
        if not isinstance(other, SecretValue):
            return NotImplemented
        return self._value <= other._value

    def __hash__(self) -> int:
        return hash(self._value)

    # ── Pydantic integration ────────────────────────────────────

    @classmethod
    def __get_pydantic_core_schema__(
        cls,
        source_type: Any,
        handler: GetCoreSchemaHandler,
    ) -> core_schema.CoreSchema:
        from_str = core_schema.no_info_after_validator_function(
            cls,
            core_schema.str_schema(),
        )
        return core_schema.json_or_python_schema(
            json_schema=from_str,
            python_schema=core_schema.union_schema(
                [core_schema.is_instance_schema(cls), from_str],
            ),
            serialization=core_schema.plain_serializer_function_ser_schema(
                _serialize_secret,
                info_arg=True,
            ),
        )


def _serialize_secret(value: SecretValue, info: core_schema.SerializationInfo) -> Any:
    context = info.context or {}
    if context.get(REVEAL_CONTEXT_KEY):
        return value.reveal()
    if info.mode == "python" and not context:
        # Python-mode dumps keep the wrapper so model_validate() round-trips.
        return value
    return REDACTED
