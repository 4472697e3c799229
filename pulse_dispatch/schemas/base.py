"""Base schemas shared by the API routes."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class DispatchBaseModel(BaseModel):
    """Base model with common configuration."""

    model_config = ConfigDict(
        from_attributes=True,  # Enable ORM mode
        populate_by_name=True,
        use_enum_values=True,
    )


class TimestampMixin(BaseModel):
    """Mixin for created/updated timestamps."""

    created_at: datetime
    updated_at: datetime | None = None


# =============================================================================
# RESPONSES
# =============================================================================


class SuccessResponse(DispatchBaseModel):
    """Every successful body carries success=true."""

    success: bool = True


class ErrorResponse(DispatchBaseModel):
    """Standard error response format."""

    success: bool = False
    error: str
