"""Shared pydantic base for value objects crossing component boundaries.

JSON-RPC envelopes, authorization server metadata and OAuth flow results are
produced once and handed between components, so they are immutable and
reject unknown fields. Token claims are the exception: they keep extension
claims and therefore use their own configuration.
"""

from pydantic import BaseModel, ConfigDict


class FrameworkBaseModel(BaseModel):
    """Frozen, strict base model.

    Example:
        >>> class Result(FrameworkBaseModel):
        ...     name: str
        >>> Result(name="test").name
        'test'
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        populate_by_name=True,
        validate_default=True,
    )
