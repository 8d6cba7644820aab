"""Out-of-process embedding worker.

Keeps the embedding model in a child process so model load time and native
runtime crashes never block or take down the host.
"""

from .client import EmbeddingWorker, WorkerState
from .protocol import (
    MESSAGE_DELIMITER,
    ErrorKind,
    MessageType,
    ProtocolError,
    WorkerRequest,
    WorkerResponse,
)

__all__ = [
    # Client
    "EmbeddingWorker",
    "WorkerState",
    # Protocol
    "ErrorKind",
    "MessageType",
    "ProtocolError",
    "WorkerRequest",
    "WorkerResponse",
    "MESSAGE_DELIMITER",
]
