"""Models for the root routes of the file simulator controller."""

from __future__ import annotations

from pydantic import BaseModel, Field
from safir.metadata import Metadata

__all__ = ["Index"]


class Index(BaseModel):
    """Response for the root of the controller's external API."""

    metadata: Metadata = Field(..., title="Package metadata")

    namespace: str = Field(
        ...,
        title="Simulator namespace",
        description="Namespace in which protocol servers are managed",
        examples=["file-simulator"],
    )
