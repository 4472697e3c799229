"""Pydantic schemas for API request/response validation."""

from .base import DispatchBaseModel, ErrorResponse, SuccessResponse, TimestampMixin

__all__ = [
    "DispatchBaseModel",
    "ErrorResponse",
    "SuccessResponse",
    "TimestampMixin",
]
