"""Exception hierarchy for the RAG pipeline.

Gateways raise the ``*Unavailable`` errors; components wrap them into their
own failure type with ``raise ... from`` so the gateway error stays reachable
through ``__cause__``.
"""


class RagError(Exception):
    """Base exception for all pipeline errors."""


class InvalidConfig(RagError):
    """Chunking, retrieval or generation parameters are out of range."""


class GatewayError(RagError):
    """An external collaborator (model server, vector store) failed."""


class EmbeddingUnavailable(GatewayError):
    """The embedding model could not turn text into a vector."""


class StoreUnavailable(GatewayError):
    """The vector store could not insert or answer a query."""


class LLMUnavailable(GatewayError):
    """The language model request failed."""


class RetrievalUnavailable(RagError):
    """Retrieval failed because the embedding call or store query failed."""


class GenerationFailed(RagError):
    """The language model did not produce an answer."""


class Cancelled(RagError):
    """The caller cancelled the operation or its deadline expired."""
