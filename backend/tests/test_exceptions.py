"""Tests for the error taxonomy's HTTP status mapping."""

import pytest

from knowledge_hub.core.exceptions import (
    EmbeddingDimensionMismatch,
    EmbeddingUnavailable,
    EmptyDocument,
    GenerationFailure,
    InvalidConfig,
    KnowledgeHubError,
    MethodNotFound,
    NotFound,
    StorageError,
    UnsupportedFormat,
    ValidationError,
)


@pytest.mark.parametrize(
    "error, status",
    [
        (KnowledgeHubError("x"), 500),
        (ValidationError("x"), 422),
        (InvalidConfig("x"), 500),
        (NotFound("x"), 404),
        (UnsupportedFormat("x"), 415),
        (EmptyDocument("x"), 422),
        (EmbeddingUnavailable("x", retryable=True), 503),
        (EmbeddingUnavailable("x"), 502),
        (GenerationFailure("x"), 502),
        (StorageError("x"), 500),
        (MethodNotFound("x"), 404),
    ],
)
def test_status_codes(error, status):
    assert error.status_code == status
    assert error.message == "x"
    assert str(error) == "x"


def test_dimension_mismatch_is_not_retryable():
    error = EmbeddingDimensionMismatch(expected=768, actual=384)
    assert isinstance(error, EmbeddingUnavailable)
    assert (error.expected, error.actual) == (768, 384)
    assert error.retryable is False
    assert error.status_code == 502
    assert "384" in error.message
