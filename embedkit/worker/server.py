"""Embedding worker process.

Hosts an embedding generator in its own process so model load time and any
native runtime crash stay out of the host. Spawned by EmbeddingWorker as
`python -m embedkit.worker.server`; configuration arrives via EMBEDKIT_WORKER_*
environment variables.

stdout carries protocol messages only. Logging and anything a library
prints goes to stderr.
"""

import asyncio
import logging
import os
import signal
import sys
import time
from typing import BinaryIO

from ..config import ENV_PREFIX
from ..constants import DEFAULT_DIMENSIONS, DEFAULT_MODEL
from ..embeddings.generator import EmbeddingGenerator, create_generator
from ..exceptions import DimensionMismatchError
from .protocol import (
    MAX_MESSAGE_SIZE,
    MESSAGE_DELIMITER,
    MessageType,
    ProtocolError,
    WorkerRequest,
    WorkerResponse,
)

logger = logging.getLogger(__name__)


def send_message(output: BinaryIO, response: WorkerResponse) -> None:
    """Write one protocol message to the host."""
    output.write(response.to_json().encode("utf-8") + MESSAGE_DELIMITER)
    output.flush()


class EmbeddingWorkerServer:
    """Serves embed requests from a line-delimited JSON stream."""

    def __init__(self, generator: EmbeddingGenerator, output: BinaryIO) -> None:
        self.generator = generator
        self.output = output
        self.requests_processed = 0
        self._shutdown_requested = False

        # Requests are encoded one at a time; the reader keeps accepting input
        self._request_queue: asyncio.Queue[WorkerRequest] = asyncio.Queue()

    def send(self, response: WorkerResponse) -> None:
        send_message(self.output, response)

    async def load(self) -> bool:
        """Load the model and announce readiness. Returns False on failure."""
        try:
            await asyncio.to_thread(self.generator.load)
        except DimensionMismatchError as e:
            logger.error(f"Embedding model has the wrong dimension: {e}")
            self.send(WorkerResponse.dimension_mismatch(e, prefix="Init failed: "))
            return False
        except Exception as e:
            logger.exception("Embedding model failed to load")
            self.send(WorkerResponse.create_error(f"Init failed: {e}"))
            return False

        self.send(WorkerResponse.ready(self.generator.dimensions))
        logger.info(f"Worker ready (dimensions={self.generator.dimensions})")
        return True

    async def handle_request(self, request: WorkerRequest) -> WorkerResponse:
        """Embed a single request."""
        start = time.perf_counter()
        try:
            embedding = await asyncio.to_thread(self.generator.embed, request.text)
        except DimensionMismatchError as e:
            logger.error(f"Request {request.id}: {e}")
            return WorkerResponse.dimension_mismatch(e, request.id)
        except Exception as e:
            logger.exception(f"Error embedding request {request.id}")
            return WorkerResponse.create_error(str(e), request.id)
        finally:
            self.requests_processed += 1

        time_ms = (time.perf_counter() - start) * 1000
        return WorkerResponse.result(request.id, embedding.tolist(), time_ms)

    async def _process_queue(self) -> None:
        """Process requests from the queue sequentially."""
        while True:
            request = await self._request_queue.get()
            response = await self.handle_request(request)
            self.send(response)
            self._request_queue.task_done()

    async def serve(self, reader: asyncio.StreamReader) -> None:
        """Read requests until shutdown or end of input."""
        queue_task = asyncio.create_task(self._process_queue())
        try:
            while not self._shutdown_requested:
                try:
                    line = await reader.readline()
                except ValueError:
                    logger.warning("Dropping oversized request line")
                    continue
                if not line:
                    logger.info("Input closed, shutting down")
                    break
                if not line.strip():
                    continue

                try:
                    request = WorkerRequest.from_json(line)
                except ProtocolError as e:
                    logger.warning(f"Dropping malformed request: {e}")
                    continue

                if request.type is MessageType.SHUTDOWN:
                    logger.info("Shutdown requested")
                    break

                await self._request_queue.put(request)
        finally:
            queue_task.cancel()
            try:
                await queue_task
            except asyncio.CancelledError:
                pass
            logger.info(f"Worker stopped after {self.requests_processed} requests")

    def request_shutdown(self) -> None:
        """Request graceful shutdown."""
        self._shutdown_requested = True


async def _open_stdin() -> asyncio.StreamReader:
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader(limit=MAX_MESSAGE_SIZE)
    await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), sys.stdin)
    return reader


async def _main(server: EmbeddingWorkerServer) -> int:
    loop = asyncio.get_running_loop()
    reader = await _open_stdin()

    def signal_handler(signum: int) -> None:
        logger.info(f"Received signal {signum}, shutting down...")
        server.request_shutdown()
        # Unblock a pending readline
        reader.feed_eof()

    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, signal_handler, signum)

    if not await server.load():
        return 1

    await server.serve(reader)
    return 0


def _take_protocol_stdout() -> BinaryIO:
    """Reserve the real stdout for protocol messages and point fd 1 at stderr."""
    protocol_out = os.fdopen(os.dup(sys.stdout.fileno()), "wb")
    os.dup2(sys.stderr.fileno(), sys.stdout.fileno())
    sys.stdout = sys.stderr
    return protocol_out


def _env(name: str, default: str) -> str:
    return os.environ.get(f"{ENV_PREFIX}WORKER_{name}", default)


def run_worker() -> int:
    """Run the embedding worker (blocking). Returns the process exit code."""
    from ..logging_config import setup_logging

    protocol_out = _take_protocol_stdout()
    show_progress = _env("SHOW_PROGRESS", "0") == "1"
    setup_logging(verbose=show_progress, stream=sys.stderr)
    if not show_progress:
        os.environ.setdefault("HF_HUB_DISABLE_PROGRESS_BARS", "1")

    try:
        generator = create_generator(
            provider=_env("PROVIDER", "transformers"),
            dimensions=int(_env("DIMENSIONS", str(DEFAULT_DIMENSIONS))),
            model_name=_env("MODEL", DEFAULT_MODEL),
            cache_dir=_env("CACHE_DIR", "") or None,
            mock_delay_ms=int(_env("MOCK_DELAY_MS", "0")),
        )
    except Exception as e:
        logger.exception("Invalid worker configuration")
        send_message(protocol_out, WorkerResponse.create_error(f"Init failed: {e}"))
        protocol_out.close()
        return 1

    server = EmbeddingWorkerServer(generator=generator, output=protocol_out)
    try:
        return asyncio.run(_main(server))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down...")
        return 0
    finally:
        protocol_out.close()


if __name__ == "__main__":
    sys.exit(run_worker())
