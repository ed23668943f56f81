"""Error types raised by the knowledge pipeline."""


class KnowledgeError(Exception):
    """Base error; ``kind`` is a stable machine-readable category."""

    kind = "knowledge_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class QuestionValidationError(KnowledgeError):
    kind = "invalid_question"


class DocumentValidationError(KnowledgeError):
    """Document payload failed validation before any chunking work."""

    kind = "invalid_document"

    def __init__(self, errors: list[str]) -> None:
        super().__init__("; ".join(errors))
        self.errors = errors


class ChunkingConfigError(KnowledgeError, ValueError):
    kind = "invalid_chunking_config"


class EmbeddingError(KnowledgeError):
    """The embedding service failed. Fatal for the current operation."""

    kind = "embedding_failed"


class EmbeddingDimensionError(EmbeddingError):
    kind = "embedding_dimension_mismatch"


class GenerationError(KnowledgeError):
    """The generation service failed or returned nothing."""

    kind = "generation_failed"


class RetrievalError(KnowledgeError):
    """Both the primary and the fallback retrieval paths failed."""

    kind = "retrieval_failed"
