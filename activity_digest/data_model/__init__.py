"""Shared Pydantic base models and field types."""

from activity_digest.data_model.base import StrictBaseModel, UtcDatetime, ensure_utc


__all__ = ["StrictBaseModel", "UtcDatetime", "ensure_utc"]
