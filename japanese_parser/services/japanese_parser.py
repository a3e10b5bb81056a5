# ==== JAPANESE PARSER SERVICE ==== #

"""
Japanese parser service composing the resilience layer around Ichiran.

This module owns the rate limiter, circuit breaker and process bridge for one
process. It exposes the parser operations and the ``dispatch`` entry point
the tool surface calls with a tool name and a validated payload.
"""

import json
from typing import Any, Awaitable, Callable, Dict, Optional

from japanese_parser import __version__
from japanese_parser.errors import (
    InvalidInputError,
    ParserError,
    RateLimitedError,
    ToolResponse,
    UnknownToolError,
    handle_tool_error,
)
from japanese_parser.observability.logging import get_logger
from japanese_parser.observability.metrics import tool_calls_total
from japanese_parser.observability.tracing import get_tracer
from japanese_parser.resilience.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from japanese_parser.resilience.rate_limiter import DEFAULT_CLIENT_ID, RateLimiter
from japanese_parser.resilience.timeout import with_timeout
from japanese_parser.services.engine_commands import (
    evaluate_args,
    full_args,
    help_args,
    romanize_args,
)
from japanese_parser.services.process_bridge import (
    ParsedAnalysis,
    ProcessBridge,
    decode_evaluated,
    decode_structured,
)
from japanese_parser.services.text import (
    contains_kanji,
    sanitize_japanese_text,
    validate_japanese_text,
)
from japanese_parser.settings import Settings, get_settings


# ==== MODULE INITIALIZATION ==== #


logger = get_logger(__name__)
tracer = get_tracer(__name__)

DEFAULT_PARSE_LIMIT = 5


# ==== SERVICE CLASS ==== #


class JapaneseParserService:
    """
    Parser operations guarded by rate limiting, circuit breaking and timeouts.

    Every engine-backed operation runs as
    ``breaker.execute(with_timeout(bridge call + decode))``. Input is
    validated before the breaker is consulted, so bad input never counts
    as an engine failure. Instances are constructed explicitly and can be
    given their own collaborators, which keeps tests isolated.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        bridge: Optional[ProcessBridge] = None,
        rate_limiter: Optional[RateLimiter] = None,
        circuit_breaker: Optional[CircuitBreaker] = None
    ):
        """
        Initialize the service and its collaborators.

        Args:
            settings: Application settings, defaults to the global instance
            bridge: Ichiran process bridge
            rate_limiter: Per-client admission control
            circuit_breaker: Breaker guarding the engine call path
        """
        self.settings = settings or get_settings()
        self.bridge = bridge or ProcessBridge.from_settings(self.settings)
        self.rate_limiter = rate_limiter or RateLimiter(
            max_requests=self.settings.RATE_LIMIT_MAX,
            window_ms=self.settings.RATE_LIMIT_WINDOW_MS,
            sweep_interval_ms=self.settings.RATE_LIMIT_SWEEP_INTERVAL_MS,
        )
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            "ichiran",
            CircuitBreakerConfig(
                failure_threshold=self.settings.CIRCUIT_BREAKER_FAILURE_THRESHOLD,
                cooldown_ms=self.settings.CIRCUIT_BREAKER_COOLDOWN_MS,
            ),
        )

        self._tools: Dict[str, Callable[[Dict[str, Any]], Awaitable[ToolResponse]]] = {
            "parse_japanese_text": self._parse_japanese_text_tool,
            "romanize_japanese": self._romanize_japanese_tool,
            "analyze_kanji": self._analyze_kanji_tool,
            "health_check": self._health_check_tool,
        }

    # --► LIFECYCLE

    async def start(self) -> None:
        """Start background maintenance (rate limit window sweep)."""
        self.rate_limiter.start()
        logger.info(
            "Japanese parser service started",
            container=self.bridge.container_name,
            environment=self.settings.APP_ENV,
        )

    async def stop(self) -> None:
        await self.rate_limiter.stop()
        logger.info("Japanese parser service stopped")

    async def __aenter__(self) -> "JapaneseParserService":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        await self.stop()
        return False

    @property
    def tool_names(self) -> list[str]:
        return list(self._tools)

    # --► GUARDED EXECUTION

    async def _guarded(self, label: str, operation: Callable[[], Awaitable[Any]]) -> Any:
        """Run ``operation`` under the breaker, bounded by the engine timeout."""
        return await self.circuit_breaker.execute(
            lambda: with_timeout(operation(), self.settings.ICHIRAN_TIMEOUT, label)
        )

    def _prepare_text(self, text: str) -> str:
        sanitized = sanitize_japanese_text(text, self.settings.MAX_TEXT_LENGTH)
        validate_japanese_text(sanitized, self.settings.MAX_TEXT_LENGTH)
        return sanitized

    # ==== PARSER OPERATIONS ==== #

    async def parse_text(self, text: str, limit: int = DEFAULT_PARSE_LIMIT) -> ParsedAnalysis:
        """
        Segment Japanese text with dictionary information.

        Args:
            text: Japanese text to parse
            limit: Number of segmentation alternatives to request

        Returns:
            ParsedAnalysis: Decoded full analysis

        Raises:
            InvalidInputError: If the text is empty, too long or not Japanese
            ParserError: Classified engine, decode or breaker error
        """
        sanitized = self._prepare_text(text)

        async def operation() -> ParsedAnalysis:
            output = await self.bridge.run(full_args(sanitized, limit))
            return decode_structured(output)

        return await self._guarded("parseJapaneseText", operation)

    async def romanize(
        self,
        text: str,
        scheme: Optional[str] = None,
        include_info: bool = False
    ) -> str:
        """
        Romanize Japanese text.

        Without a scheme the engine's default romanization mode is used (with
        ``-i`` when ``include_info`` is set). With a scheme, the scheme's
        evaluation expression is run and its printed string is decoded.

        Args:
            text: Japanese text to romanize
            scheme: ``hepburn``, ``kunrei`` or ``passport``
            include_info: Include word information

        Returns:
            str: Romanized text
        """
        sanitized = self._prepare_text(text)
        if scheme is None:
            args = romanize_args(sanitized, include_info)
        else:
            args = evaluate_args(sanitized, scheme, include_info)

        async def operation() -> str:
            output = await self.bridge.run(args)
            return output if scheme is None else decode_evaluated(output)

        return await self._guarded("romanizeJapanese", operation)

    async def analyze_kanji(self, text: str) -> Any:
        """
        Full analysis of text containing kanji.

        Returns:
            The decoded analysis tree as produced by the engine
        """
        sanitized = sanitize_japanese_text(text, self.settings.MAX_TEXT_LENGTH)
        if not contains_kanji(sanitized):
            raise InvalidInputError("Input must contain kanji characters")

        async def operation() -> ParsedAnalysis:
            output = await self.bridge.run(full_args(sanitized))
            return decode_structured(output)

        analysis = await self._guarded("analyzeKanji", operation)
        return analysis.raw

    async def health_check(self) -> Dict[str, Any]:
        """
        Probe the engine with ``--help`` under the short health timeout.

        The probe bypasses the circuit breaker so it reports real engine
        availability even while the breaker is open.

        Returns:
            Dict[str, Any]: Health flag, breaker state, version and environment
        """
        timeout_ms = self.settings.HEALTH_CHECK_TIMEOUT
        try:
            await with_timeout(
                self.bridge.run(help_args(), timeout_ms=timeout_ms),
                timeout_ms,
                "healthCheck",
            )
            healthy = True
        except ParserError as e:
            logger.warning("Ichiran health check failed", error_code=e.code)
            healthy = False

        return {
            "healthy": healthy,
            "circuit_breaker_state": self.circuit_breaker.state.value,
            "version": __version__,
            "environment": self.settings.APP_ENV,
        }

    # ==== TOOL DISPATCH ==== #

    async def dispatch(
        self,
        tool_name: str,
        payload: Optional[Dict[str, Any]] = None,
        client_id: str = DEFAULT_CLIENT_ID
    ) -> ToolResponse:
        """
        Serve one tool call.

        The rate limiter is consulted first, then the call is routed to the
        tool handler. Every error is turned into an error response carrying
        its code.

        Args:
            tool_name: Tool identifier
            payload: Validated tool arguments
            client_id: Caller identifier for rate limiting

        Returns:
            ToolResponse: Success payload or classified error
        """
        payload = payload or {}
        metric_tool = tool_name if tool_name in self._tools else "unknown"

        with tracer.start_as_current_span("tool_call") as span:
            span.set_attribute("tool.name", tool_name)
            try:
                if await self.rate_limiter.is_rate_limited(client_id):
                    raise RateLimitedError(
                        f"Rate limit exceeded. Maximum {self.rate_limiter.max_requests} "
                        f"requests per {int(self.rate_limiter.window_ms / 1000)} seconds."
                    )

                handler = self._tools.get(tool_name)
                if handler is None:
                    raise UnknownToolError(f"Unknown tool: {tool_name}")

                response = await handler(payload)
            except Exception as e:
                span.set_attribute("error", str(e))
                tool_calls_total.labels(tool=metric_tool, status="error").inc()
                return handle_tool_error(e, tool_name, self.settings.is_development)

        tool_calls_total.labels(tool=metric_tool, status="success").inc()
        return response

    @staticmethod
    def _require_text(payload: Dict[str, Any]) -> str:
        text = payload.get("text")
        if not isinstance(text, str):
            raise InvalidInputError("Missing required parameter 'text'")
        return text

    async def _parse_japanese_text_tool(self, payload: Dict[str, Any]) -> ToolResponse:
        options = payload.get("options") or {}
        analysis = await self.parse_text(
            self._require_text(payload),
            limit=options.get("limit", DEFAULT_PARSE_LIMIT),
        )
        segmentation = analysis.model_dump(include={"words", "confidence", "alternatives"})
        return ToolResponse.text(json.dumps(segmentation, ensure_ascii=False))

    async def _romanize_japanese_tool(self, payload: Dict[str, Any]) -> ToolResponse:
        options = payload.get("options") or {}
        result = await self.romanize(
            self._require_text(payload),
            scheme=options.get("scheme", "hepburn"),
            include_info=options.get("includeInfo", False),
        )
        return ToolResponse.text(result)

    async def _analyze_kanji_tool(self, payload: Dict[str, Any]) -> ToolResponse:
        result = await self.analyze_kanji(self._require_text(payload))
        return ToolResponse.text(json.dumps(result, ensure_ascii=False))

    async def _health_check_tool(self, payload: Dict[str, Any]) -> ToolResponse:
        return ToolResponse.text(json.dumps(await self.health_check()))
