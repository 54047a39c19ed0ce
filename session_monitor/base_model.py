"""
Shared Pydantic base models.

Published models inherit from StrictModel. Records decoded from files owned by
the agent CLIs inherit from PermissiveModel, since those formats grow new
fields without notice.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class StrictModel(BaseModel):
    """Base model with strict validation settings."""

    model_config = ConfigDict(
        extra='forbid',  # Raise error on unexpected fields
        strict=True,  # Strict type validation
        frozen=True,  # Immutable (cannot modify after creation)
    )


class PermissiveModel(BaseModel):
    """
    Base model for on-disk records we do not own.

    Symmetry with StrictModel:
    - StrictModel: extra='forbid' (rejects unknown fields)
    - PermissiveModel: extra='allow' (accepts unknown fields)

    Use as the LAST type in typed unions to catch unknown records:

        TranscriptRecord = Annotated[
            UserRecord | AssistantRecord | UnknownRecord,
            pydantic.Field(union_mode='left_to_right'),
        ]
    """

    model_config = ConfigDict(
        extra='allow',  # Accept unknown fields (graceful fallback)
        strict=True,  # Strict type coercion for known fields
        frozen=True,  # Immutable after creation
    )
