# ==== ICHIRAN PROCESS BRIDGE ==== #

"""
Process bridge to the Ichiran engine for the Japanese parser.

This module runs ``ichiran-cli`` inside its Docker container as a
subprocess, classifies how an invocation failed, and decodes the engine's two
output encodings: JSON from full analysis mode and printed Lisp strings from
expression evaluation mode.
"""

import asyncio
import json
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from pydantic import BaseModel, Field, ValidationError

from japanese_parser.errors import (
    ENGINE_ERRORS,
    DecodeError,
    EngineError,
    FailureKind,
    TimedOutError,
)
from japanese_parser.observability.logging import get_logger, log_performance
from japanese_parser.observability.metrics import (
    engine_invocation_duration_seconds,
    engine_invocations_total,
)
from japanese_parser.observability.tracing import get_tracer
from japanese_parser.resilience.timeout import with_timeout
from japanese_parser.services.engine_commands import mode_of


# ==== MODULE INITIALIZATION ==== #


logger = get_logger(__name__)
tracer = get_tracer(__name__)

# Docker reports a missing or stopped execution container with these messages
CONTAINER_MISSING_MARKERS = ("No such container", "is not running")
TIMEOUT_MARKERS = ("timeout", "timed out")

_STDERR_EXCERPT = 500
_READ_CHUNK_BYTES = 65_536


class OutputLimitExceeded(Exception):
    """Engine wrote more than the bridge accepts on stdout."""

    def __init__(self, limit: int):
        super().__init__(f"Ichiran output exceeded {limit} bytes")
        self.limit = limit


# ==== INVOCATION DATA MODEL ==== #


@dataclass(frozen=True)
class EngineInvocation:
    """Immutable description of one engine call."""
    argv: Tuple[str, ...]
    timeout_ms: int


@dataclass(frozen=True)
class EngineSuccess:
    """Engine exited cleanly; ``stdout`` is already trimmed."""
    stdout: str

    @property
    def ok(self) -> bool:
        return True

    def unwrap(self) -> str:
        return self.stdout


@dataclass(frozen=True)
class EngineFailure:
    """Classified engine failure; ``detail`` carries the cause or exit status."""
    kind: FailureKind
    message: str
    detail: Any = None

    @property
    def ok(self) -> bool:
        return False

    def to_error(self) -> EngineError:
        """Build the classified exception for this failure."""
        if isinstance(self.detail, EngineError) and self.detail.kind is self.kind:
            return self.detail
        return ENGINE_ERRORS[self.kind](self.message, details=self.detail)

    def unwrap(self) -> str:
        raise self.to_error()


EngineResult = Union[EngineSuccess, EngineFailure]


# ==== DECODED OUTPUT MODEL ==== #


class ParsedAnalysis(BaseModel):
    """
    Decoded full-analysis output.

    ``raw`` keeps the decoded tree as received. ``words`` holds the word
    records of the best segmentation: taken as-is from an object payload, or
    collected from Ichiran's native nested-array output.
    """
    raw: Any = None
    words: List[Dict[str, Any]] = Field(default_factory=list)
    confidence: float = 0.5
    alternatives: int = 0

    @classmethod
    def from_payload(cls, payload: Any) -> "ParsedAnalysis":
        """
        Build an analysis from a decoded JSON value.

        Args:
            payload: Result of decoding the engine's structured output

        Returns:
            ParsedAnalysis: Normalized analysis

        Raises:
            DecodeError: If the payload is not an object or array tree of the
                expected shape
        """
        try:
            if isinstance(payload, dict):
                return cls(
                    raw=payload,
                    words=payload.get("words") or [],
                    confidence=payload.get("confidence", 0.5),
                    alternatives=payload.get("alternatives", 0),
                )
            if isinstance(payload, list):
                words, alternatives = _collect_segmented_words(payload)
                return cls(raw=payload, words=words, alternatives=alternatives)
        except ValidationError as e:
            raise DecodeError(
                f"Unexpected structure in analysis output: {e.error_count()} invalid field(s)",
                details={"errors": e.errors(include_url=False)},
            ) from e

        raise DecodeError(
            f"Expected an object or array from full analysis, got {type(payload).__name__}"
        )


def _collect_segmented_words(segments: List[Any]) -> Tuple[List[Dict[str, Any]], int]:
    """Walk Ichiran's ``-f`` tree: segment -> [[words, score], ...] -> [romaji, info, ...]."""
    words: List[Dict[str, Any]] = []
    alternatives = 0

    for segment in segments:
        # Plain strings are untranslated gaps such as punctuation
        if not isinstance(segment, list) or not segment:
            continue
        alternatives = max(alternatives, len(segment))
        best = segment[0]
        if not isinstance(best, list) or not best or not isinstance(best[0], list):
            continue
        for entry in best[0]:
            if isinstance(entry, list) and len(entry) >= 2 and isinstance(entry[1], dict):
                words.append({"romanization": entry[0], **entry[1]})

    return words, alternatives


# ==== OUTPUT DECODERS ==== #


def decode_structured(output: str) -> ParsedAnalysis:
    """
    Decode full-analysis (``-f``) output.

    Args:
        output: Trimmed engine stdout

    Returns:
        ParsedAnalysis: Decoded analysis

    Raises:
        DecodeError: If the output is not well-formed JSON of the expected shape
    """
    try:
        payload = json.loads(output)
    except (json.JSONDecodeError, TypeError) as e:
        raise DecodeError(
            f"Failed to decode Ichiran analysis output: {e}",
            details={"output": output[:_STDERR_EXCERPT] if isinstance(output, str) else None},
        ) from e

    return ParsedAnalysis.from_payload(payload)


def decode_evaluated(output: str) -> str:
    """
    Decode the printed value of an evaluation-mode (``-e``) call.

    String results are printed as Lisp string literals: surrounded by double
    quotes, with ``\\"`` and ``\\\\`` escapes, possibly followed by further
    printed values such as ``NIL`` on the next line. The first literal is
    read and everything after its closing quote is dropped. Output that is
    not a string literal is returned stripped.

    Args:
        output: Engine stdout

    Returns:
        str: Unquoted result

    Raises:
        DecodeError: If a string literal is opened but never closed
    """
    text = output.strip()
    if not text.startswith('"'):
        return text

    chars: List[str] = []
    escaped = False
    for char in text[1:]:
        if escaped:
            chars.append(char)
            escaped = False
        elif char == "\\":
            escaped = True
        elif char == '"':
            return "".join(chars)
        else:
            chars.append(char)

    raise DecodeError(
        "Unterminated string literal in Ichiran evaluation output",
        details={"output": text[:_STDERR_EXCERPT]},
    )


# ==== PROCESS BRIDGE CLASS ==== #


class ProcessBridge:
    """
    Runs ``ichiran-cli`` inside its container and classifies the outcome.

    Each call is bounded by a timeout; when it fires, the ``docker exec``
    client process is killed. Failures are returned as EngineFailure values
    by :meth:`invoke` or raised as classified errors by :meth:`run`.
    """

    decode_structured = staticmethod(decode_structured)
    decode_evaluated = staticmethod(decode_evaluated)

    def __init__(
        self,
        container_name: str = "ichiran-main-1",
        cli_path: str = "./ichiran-cli",
        docker_binary: str = "docker",
        timeout_ms: int = 30_000,
        max_output_bytes: int = 1_048_576,
        command_prefix: Optional[Sequence[str]] = None
    ):
        """
        Initialize the bridge.

        Args:
            container_name: Docker container the engine runs inside
            cli_path: Path of ``ichiran-cli`` within the container
            docker_binary: Docker client executable
            timeout_ms: Default invocation timeout
            max_output_bytes: Largest stdout accepted from the engine
            command_prefix: Replaces the ``docker exec`` prefix entirely, e.g.
                to run a locally installed CLI
        """
        self.container_name = container_name
        self.cli_path = cli_path
        self.docker_binary = docker_binary
        self.timeout_ms = timeout_ms
        self.max_output_bytes = max_output_bytes
        self._command_prefix = list(command_prefix) if command_prefix else None

    @classmethod
    def from_settings(cls, settings) -> "ProcessBridge":
        """Create a bridge from application settings."""
        return cls(
            container_name=settings.ICHIRAN_CONTAINER_NAME,
            cli_path=settings.ICHIRAN_CLI_PATH,
            docker_binary=settings.DOCKER_BINARY,
            timeout_ms=settings.ICHIRAN_TIMEOUT,
            max_output_bytes=settings.ICHIRAN_MAX_OUTPUT_BYTES,
        )

    @property
    def command_prefix(self) -> List[str]:
        if self._command_prefix is not None:
            return list(self._command_prefix)
        return [self.docker_binary, "exec", self.container_name, self.cli_path]

    def build_command(self, argv: Sequence[str]) -> List[str]:
        return [*self.command_prefix, *argv]

    async def invoke(self, argv: Sequence[str], timeout_ms: Optional[int] = None) -> EngineResult:
        """
        Invoke the engine and classify the outcome.

        Classification order: missing container, non-zero exit, timeout,
        any other exception, and finally success with trimmed stdout.

        Args:
            argv: Engine arguments
            timeout_ms: Override of the default timeout

        Returns:
            EngineResult: EngineSuccess or EngineFailure
        """
        invocation = EngineInvocation(tuple(argv), timeout_ms or self.timeout_ms)
        mode = mode_of(invocation.argv)

        with tracer.start_as_current_span("ichiran_invoke") as span:
            span.set_attribute("ichiran.mode", mode)
            span.set_attribute("ichiran.timeout_ms", invocation.timeout_ms)

            start_time = time.perf_counter()
            result = await self._invoke(invocation, mode)
            duration = time.perf_counter() - start_time

            outcome = "success" if result.ok else result.kind.value
            span.set_attribute("ichiran.outcome", outcome)

        engine_invocations_total.labels(mode=mode, outcome=outcome).inc()
        engine_invocation_duration_seconds.labels(mode=mode).observe(duration)
        log_performance(f"ichiran:{mode}", duration, result.ok, outcome=outcome)

        if not result.ok:
            logger.warning(
                f"Ichiran invocation failed: {result.message}",
                mode=mode,
                failure_kind=result.kind.value,
            )
        return result

    async def run(self, argv: Sequence[str], timeout_ms: Optional[int] = None) -> str:
        """Invoke the engine and return stdout, raising the classified error on failure."""
        result = await self.invoke(argv, timeout_ms)
        return result.unwrap()

    async def _invoke(self, invocation: EngineInvocation, mode: str) -> EngineResult:
        try:
            exit_code, stdout, stderr = await with_timeout(
                self._run_process(invocation.argv),
                invocation.timeout_ms,
                f"ichiran {mode}",
            )
        except TimedOutError as e:
            return EngineFailure(FailureKind.TIMED_OUT, "Processing timeout exceeded", e)
        except OutputLimitExceeded as e:
            return EngineFailure(FailureKind.EXECUTION_ERROR, str(e), {"limit": e.limit})
        except Exception as e:
            if any(marker in str(e).lower() for marker in TIMEOUT_MARKERS):
                return EngineFailure(FailureKind.TIMED_OUT, "Processing timeout exceeded", e)
            return EngineFailure(
                FailureKind.EXECUTION_ERROR,
                f"Ichiran execution failed: {e}",
                e,
            )

        return self._classify(exit_code, stdout, stderr)

    def _classify(self, exit_code: int, stdout: bytes, stderr: bytes) -> EngineResult:
        error_text = stderr.decode("utf-8", errors="replace").strip()

        if exit_code != 0:
            if any(marker in error_text for marker in CONTAINER_MISSING_MARKERS):
                return EngineFailure(
                    FailureKind.CONTAINER_NOT_FOUND,
                    "Ichiran container not running. Start with: docker-compose up -d",
                    {"container": self.container_name, "stderr": error_text[:_STDERR_EXCERPT]},
                )
            return EngineFailure(
                FailureKind.COMMAND_FAILED,
                f"Ichiran exited with status {exit_code}"
                + (f": {error_text[:_STDERR_EXCERPT]}" if error_text else ""),
                {"exit_code": exit_code, "stderr": error_text[:_STDERR_EXCERPT]},
            )

        if error_text:
            logger.warning("Ichiran stderr", stderr=error_text[:_STDERR_EXCERPT])

        return EngineSuccess(stdout.decode("utf-8", errors="replace").strip())

    async def _run_process(self, argv: Sequence[str]) -> Tuple[int, bytes, bytes]:
        process = await asyncio.create_subprocess_exec(
            *self.build_command(argv),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        readers = [
            asyncio.ensure_future(self._read_capped(process.stdout)),
            asyncio.ensure_future(self._read_capped(process.stderr, truncate=True)),
        ]
        try:
            stdout, stderr = await asyncio.gather(*readers)
            exit_code = await process.wait()
        except BaseException:
            # Timed out, cancelled or over the output cap: do not leave the child running
            for reader in readers:
                reader.cancel()
            await asyncio.gather(*readers, return_exceptions=True)
            await self._terminate(process)
            raise

        return exit_code, stdout, stderr

    async def _read_capped(self, stream: asyncio.StreamReader, truncate: bool = False) -> bytes:
        """Read ``stream`` to EOF, holding at most ``max_output_bytes``."""
        chunks: List[bytes] = []
        total = 0
        while True:
            chunk = await stream.read(_READ_CHUNK_BYTES)
            if not chunk:
                return b"".join(chunks)
            if total + len(chunk) > self.max_output_bytes:
                if not truncate:
                    raise OutputLimitExceeded(self.max_output_bytes)
                chunk = chunk[:max(self.max_output_bytes - total, 0)]
            total += len(chunk)
            if chunk:
                chunks.append(chunk)

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        if process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass
        # wait() only resolves once both pipes are closed, so drain them to EOF
        for stream in (process.stdout, process.stderr):
            while stream is not None and await stream.read(_READ_CHUNK_BYTES):
                pass
        await process.wait()
        logger.debug("Killed overrunning Ichiran process", pid=process.pid)
