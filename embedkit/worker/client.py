"""Host-side handle for the embedding worker process.

Spawns the worker, waits for its readiness message, and multiplexes any
number of concurrent embed calls over the worker's stdin/stdout. Each call
gets a unique id; responses are routed back by id, never by arrival order.
"""

import asyncio
import itertools
import logging
import os
import sys
from collections.abc import Callable
from enum import Enum

import numpy as np

from ..config import WorkerConfig
from ..constants import SHUTDOWN_GRACE_SECONDS
from ..embeddings.generator import check_dimensions
from ..exceptions import (
    NotReadyError,
    RequestTooLargeError,
    WorkerCrashedError,
    WorkerShutdownError,
    WorkerTimeoutError,
)
from .protocol import (
    MAX_MESSAGE_SIZE,
    MESSAGE_DELIMITER,
    WORKER_MODULE,
    MessageType,
    ProtocolError,
    WorkerRequest,
    WorkerResponse,
)

logger = logging.getLogger(__name__)


class WorkerState(str, Enum):
    """Lifecycle of a single worker process."""

    NOT_SPAWNED = "not_spawned"
    SPAWNING = "spawning"
    READY = "ready"
    TERMINATED = "terminated"


class EmbeddingWorker:
    """Client for one embedding worker process.

    A worker is single-use: once TERMINATED (by shutdown or crash) it is never
    restarted. Callers that want a fresh process create a new EmbeddingWorker.
    """

    def __init__(self, config: WorkerConfig | None = None) -> None:
        self.config = config or WorkerConfig()
        self.state = WorkerState.NOT_SPAWNED
        self.model_dimensions: int | None = None
        self.returncode: int | None = None

        self._process: asyncio.subprocess.Process | None = None
        self._pending: dict[str, asyncio.Future[WorkerResponse]] = {}
        self._ids = itertools.count(1)
        self._ready: asyncio.Future[None] | None = None
        self._init_error: Exception | None = None
        self._shutting_down = False
        self._stdout_task: asyncio.Task[None] | None = None
        self._stderr_task: asyncio.Task[None] | None = None

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    @property
    def pending_count(self) -> int:
        """Number of requests awaiting a response."""
        return len(self._pending)

    def is_ready(self) -> bool:
        return self.state is WorkerState.READY

    async def spawn(self) -> None:
        """Start the worker process. Returns without waiting for the model to load.

        No-op while SPAWNING or READY.

        Raises:
            NotReadyError: If this worker has already terminated
        """
        if self.state in (WorkerState.SPAWNING, WorkerState.READY):
            return
        if self.state is WorkerState.TERMINATED:
            raise NotReadyError("Worker has terminated; create a new worker to respawn")

        env = os.environ.copy()
        env.update(self.config.to_env())

        logger.info(f"Spawning embedding worker (provider={self.config.provider}, dimensions={self.config.dimensions})")
        self._ready = asyncio.get_running_loop().create_future()
        self.state = WorkerState.SPAWNING
        try:
            self._process = await asyncio.create_subprocess_exec(
                sys.executable,
                "-m",
                WORKER_MODULE,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
                limit=MAX_MESSAGE_SIZE,
            )
        except OSError as e:
            self.state = WorkerState.TERMINATED
            self._ready.cancel()
            raise WorkerCrashedError(f"Failed to start embedding worker: {e}") from e

        self._stdout_task = asyncio.create_task(self._read_stdout())
        self._stderr_task = asyncio.create_task(self._read_stderr())

    async def wait_until_ready(self, timeout_ms: int | None = None) -> None:
        """Block until the worker reports readiness.

        Raises:
            NotReadyError: If spawn() has not been called
            WorkerError: If the worker failed to load its model
            DimensionMismatchError: If the loaded model has the wrong dimension
            WorkerCrashedError: If the worker exited before becoming ready
            WorkerTimeoutError: If readiness did not arrive in time
        """
        if self._ready is None:
            raise NotReadyError("Worker has not been spawned")

        timeout_ms = timeout_ms or self.config.init_timeout_ms
        try:
            await asyncio.wait_for(asyncio.shield(self._ready), timeout=timeout_ms / 1000)
        except TimeoutError:
            raise WorkerTimeoutError(f"Worker not ready after {timeout_ms}ms") from None
        except asyncio.CancelledError:
            if self._ready.cancelled():
                raise WorkerShutdownError("Worker shut down before becoming ready") from None
            raise

    async def embed(self, text: str) -> np.ndarray:
        """Embed text in the worker process.

        Raises:
            NotReadyError: If the worker has not reported readiness
            RequestTooLargeError: If the encoded request would exceed MAX_MESSAGE_SIZE
            WorkerTimeoutError: If no response arrives within request_timeout_ms
            WorkerError: If the worker reports an error for this request
            WorkerCrashedError: If the worker exits while the request is pending
            WorkerShutdownError: If shutdown() is called while the request is pending
            DimensionMismatchError: If the vector has the wrong length
        """
        if self.state is not WorkerState.READY or self._process is None:
            raise NotReadyError(f"Worker is not ready (state={self.state.value})")

        request_id = str(next(self._ids))
        payload = WorkerRequest.embed(request_id, text).to_json().encode("utf-8") + MESSAGE_DELIMITER
        if len(payload) > MAX_MESSAGE_SIZE:
            raise RequestTooLargeError(len(payload), MAX_MESSAGE_SIZE)

        future: asyncio.Future[WorkerResponse] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        timeout = self.config.request_timeout_ms / 1000

        try:
            stdin = self._process.stdin
            assert stdin is not None
            stdin.write(payload)
            await stdin.drain()
            response = await asyncio.wait_for(future, timeout=timeout)
        except TimeoutError:
            raise WorkerTimeoutError(
                f"Embed request {request_id} timed out after {self.config.request_timeout_ms}ms"
            ) from None
        except (BrokenPipeError, ConnectionResetError) as e:
            if self._shutting_down:
                raise WorkerShutdownError("Worker is shutting down") from e
            raise WorkerCrashedError("Worker pipe closed", self.returncode) from e
        finally:
            self._pending.pop(request_id, None)

        if response.is_error:
            raise response.to_exception()
        return check_dimensions(response.embedding, self.config.dimensions)

    def _dispatch(self, response: WorkerResponse) -> None:
        """Route one message from the worker."""
        if response.type is MessageType.READY:
            self.model_dimensions = response.dimensions
            if self.state is WorkerState.SPAWNING:
                self.state = WorkerState.READY
                logger.info(f"Embedding worker ready (pid={self.pid})")
            if self._ready is not None and not self._ready.done():
                self._ready.set_result(None)
            return

        if response.id is None:
            # Worker-level failure, e.g. model load failed
            self._init_error = response.to_exception()
            logger.error(f"Embedding worker error: {response.error}")
            if self._ready is not None and not self._ready.done():
                self._ready.set_exception(self._init_error)
            return

        future = self._pending.pop(response.id, None)
        if future is None:
            # Timed out or rejected already
            logger.debug(f"Dropping response for unknown request id {response.id}")
            return
        if not future.done():
            future.set_result(response)

    def _fail_pending(self, error_factory: Callable[[], Exception]) -> None:
        pending = list(self._pending.values())
        self._pending.clear()
        for future in pending:
            if not future.done():
                future.set_exception(error_factory())

    async def _read_stdout(self) -> None:
        """Read protocol messages until the worker closes stdout."""
        assert self._process is not None and self._process.stdout is not None
        stdout = self._process.stdout
        try:
            while True:
                try:
                    line = await stdout.readline()
                except ValueError:
                    logger.warning("Dropping oversized message from embedding worker")
                    continue
                if not line:
                    break
                try:
                    response = WorkerResponse.from_json(line)
                except ProtocolError as e:
                    logger.warning(f"Ignoring malformed worker message: {e}")
                    continue
                self._dispatch(response)
        finally:
            await self._on_exit()

    async def _read_stderr(self) -> None:
        """Forward worker logs (and model download progress) to our logger."""
        assert self._process is not None and self._process.stderr is not None
        stderr = self._process.stderr
        level = logging.INFO if self.config.show_progress else logging.DEBUG
        while True:
            try:
                line = await stderr.readline()
            except ValueError:
                continue  # progress bars without newlines can overflow the buffer
            if not line:
                break
            logger.log(level, f"[worker] {line.decode('utf-8', errors='replace').rstrip()}")

    async def _on_exit(self) -> None:
        assert self._process is not None
        self.returncode = await self._process.wait()
        self.state = WorkerState.TERMINATED

        if self._shutting_down:
            self._fail_pending(lambda: WorkerShutdownError("Worker shut down with request pending"))
        else:
            logger.warning(f"Embedding worker exited unexpectedly (code={self.returncode})")
            message = f"Worker exited unexpectedly with code {self.returncode}"
            self._fail_pending(lambda: WorkerCrashedError(message, self.returncode))

        if self._ready is not None and not self._ready.done():
            if self._init_error is not None:
                self._ready.set_exception(self._init_error)
            elif self._shutting_down:
                self._ready.cancel()
            else:
                self._ready.set_exception(
                    WorkerCrashedError(f"Worker exited before ready (code={self.returncode})", self.returncode)
                )

    async def shutdown(self) -> None:
        """Stop the worker and reject every pending request with WorkerShutdownError.

        Asks the worker to exit, kills it after a grace period, and always
        leaves the worker TERMINATED.
        """
        if self.state is WorkerState.TERMINATED and self._process is None:
            return
        self._shutting_down = True
        process = self._process

        try:
            self._fail_pending(lambda: WorkerShutdownError("Worker is shutting down"))
            if process is None:
                return

            if process.returncode is None:
                try:
                    assert process.stdin is not None
                    process.stdin.write(WorkerRequest.shutdown().to_json().encode("utf-8") + MESSAGE_DELIMITER)
                    await process.stdin.drain()
                    process.stdin.close()
                except (BrokenPipeError, ConnectionResetError):
                    pass

                try:
                    await asyncio.wait_for(process.wait(), timeout=SHUTDOWN_GRACE_SECONDS)
                except TimeoutError:
                    logger.warning("Embedding worker did not exit in time, killing it")
                    try:
                        process.kill()
                    except ProcessLookupError:
                        pass
                    await process.wait()

            for task in (self._stdout_task, self._stderr_task):
                if task is not None:
                    await task
        finally:
            self.state = WorkerState.TERMINATED
            if self._ready is not None and not self._ready.done():
                self._ready.cancel()
            self._fail_pending(lambda: WorkerShutdownError("Worker is shutting down"))
            self._process = None
            logger.info("Embedding worker stopped")
