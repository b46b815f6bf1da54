
# Lỗi dùng chung cho pipeline, tầng HTTP và MCP gateway.
# Mỗi lớp mang sẵn status_code; main.py map sang response {"detail": message}.


class KnowledgeHubError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message  # an toàn để hiển thị cho người dùng


class ValidationError(KnowledgeHubError):
    status_code = 422


class InvalidConfig(KnowledgeHubError):
    status_code = 500


class NotFound(KnowledgeHubError):
    status_code = 404


class UnsupportedFormat(KnowledgeHubError):
    status_code = 415


class EmptyDocument(KnowledgeHubError):
    status_code = 422


class EmbeddingUnavailable(KnowledgeHubError):
    """
    Lỗi từ embedding upstream.
    retryable=True: lỗi tạm thời (timeout, rate limit, 5xx) -> caller có thể thử lại.
    """

    def __init__(self, message: str, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable

    @property
    def status_code(self) -> int:
        return 503 if self.retryable else 502


class EmbeddingDimensionMismatch(EmbeddingUnavailable):
    def __init__(self, expected: int, actual: int):
        super().__init__(
            f"Embedding has {actual} dimensions, store expects {expected}",
            retryable=False,
        )
        self.expected = expected
        self.actual = actual


class GenerationFailure(KnowledgeHubError):
    status_code = 502


class StorageError(KnowledgeHubError):
    status_code = 500


class MethodNotFound(KnowledgeHubError):
    status_code = 404
