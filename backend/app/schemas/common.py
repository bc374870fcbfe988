"""Shared response envelopes."""

from typing import Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class PaginatedResponse(BaseModel, Generic[T]):
    """One page of a scoped list query.

    `total` counts every row the caller's scope admits under the same
    filters, not just the rows on this page.
    """
    items: list[T]
    total: int
    limit: int
    offset: int


class ErrorDetail(BaseModel):
    code: str
    message: str
    details: dict | list | None = None


class ErrorResponse(BaseModel):
    """Body of every non-2xx response (see app.middleware.exceptions)."""
    error: ErrorDetail


# Documented on every router that goes through the access engine.
ERROR_RESPONSES: dict = {
    status_code: {"model": ErrorResponse}
    for status_code in (400, 401, 403, 404, 409, 429)
}
