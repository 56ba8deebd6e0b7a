import json
import logging
import time
import traceback
from collections import defaultdict, deque
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple


@dataclass
class ErrorContext:
    """Context for an error occurrence"""
    error_type: str
    error_message: str
    stack_trace: str
    timestamp: datetime
    service: str
    operation: str
    severity: str
    recovery_action: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class ErrorSeverity(Enum):
    """Error severity levels"""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"


class ServiceType(Enum):
    """Service classifications"""
    CRITICAL = "critical"
    IMPORTANT = "important"
    OPTIONAL = "optional"


class CriticalError(Exception):
    """Exception for critical errors that stop pipeline"""
    pass


def is_rate_limit_message(message: str) -> bool:
    lowered = message.lower()
    return (
        '429' in lowered
        or 'rate limit' in lowered
        or 'rate_limit' in lowered
        or 'too many requests' in lowered
        or 'quota' in lowered
        or 'resource_exhausted' in lowered
    )


class ErrorHandler:
    """
    Records and classifies failures across pipeline stages.

    Only the generative backend is critical: feeds, probes and content fetches
    fail per task and the batch continues.
    """

    def __init__(self, raise_on_critical: bool = False) -> None:
        self.service_criticality: Dict[str, ServiceType] = {
            'backend': ServiceType.CRITICAL,
            'scheduler': ServiceType.IMPORTANT,
            'feeds': ServiceType.OPTIONAL,
            'url_validation': ServiceType.OPTIONAL,
            'content': ServiceType.OPTIONAL,
        }
        self.raise_on_critical = raise_on_critical

        self.error_history: Deque[ErrorContext] = deque(maxlen=100)
        self.error_counts: Dict[str, int] = defaultdict(int)

        self.recovery_strategies: Dict[str, Callable[[Exception], str]] = {
            'ClientConnectorError': self._suggest_connection_recovery,
            'ConnectionError': self._suggest_connection_recovery,
            'TimeoutError': self._suggest_timeout_recovery,
        }

        self.logger = logging.getLogger(__name__)

    def handle_error(
        self,
        error: Exception,
        service: str,
        operation: str,
        context: Optional[Dict[str, Any]] = None
    ) -> ErrorContext:
        error_type = type(error).__name__
        error_message = str(error) or error_type
        stack_trace = ''.join(traceback.format_exception(type(error), error, error.__traceback__))
        timestamp = datetime.now()

        severity = self.classify_severity(error, service)
        error_context = ErrorContext(
            error_type=error_type,
            error_message=error_message,
            stack_trace=stack_trace,
            timestamp=timestamp,
            service=service,
            operation=operation,
            severity=severity.value,
            recovery_action=self.get_recovery_suggestion(error),
            metadata=context or {},
        )

        self.error_history.append(error_context)
        self.error_counts[error_type] += 1

        log = self.logger.error if severity in (ErrorSeverity.CRITICAL, ErrorSeverity.HIGH) else self.logger.warning
        log(json.dumps({
            'event': 'error',
            'service': service,
            'operation': operation,
            'severity': severity.value,
            'error_type': error_type,
            'error_message': error_message,
            'timestamp': timestamp.isoformat(),
        }, ensure_ascii=False))

        if self.raise_on_critical and self.should_stop_pipeline(error_context):
            raise CriticalError(f"Critical error in {service}:{operation} - {error_message}")

        return error_context

    def classify_severity(self, error: Exception, service: str) -> ErrorSeverity:
        error_name = type(error).__name__
        message_lower = str(error).lower()
        service_type = self.service_criticality.get(service, ServiceType.OPTIONAL)

        if 'unauthorized' in message_lower or 'invalid api key' in message_lower or 'api key not valid' in message_lower:
            return ErrorSeverity.CRITICAL if service_type == ServiceType.CRITICAL else ErrorSeverity.HIGH

        if is_rate_limit_message(message_lower):
            return ErrorSeverity.HIGH if service_type != ServiceType.OPTIONAL else ErrorSeverity.MEDIUM

        if error_name in ('TimeoutError', 'CancelledError') or 'timeout' in message_lower or 'timed out' in message_lower:
            if service_type == ServiceType.CRITICAL:
                return ErrorSeverity.HIGH
            return ErrorSeverity.MEDIUM if service_type == ServiceType.IMPORTANT else ErrorSeverity.LOW

        if service_type == ServiceType.CRITICAL:
            return ErrorSeverity.HIGH
        if service_type == ServiceType.IMPORTANT:
            return ErrorSeverity.MEDIUM
        return ErrorSeverity.LOW

    def should_stop_pipeline(self, error_context: ErrorContext) -> bool:
        return error_context.severity == ErrorSeverity.CRITICAL.value

    def get_recovery_suggestion(self, error: Exception) -> Optional[str]:
        msg = str(error).lower()
        if is_rate_limit_message(msg):
            return self._suggest_rate_limit_recovery(error)
        if 'timeout' in msg or 'timed out' in msg:
            return self._suggest_timeout_recovery(error)
        name = type(error).__name__
        if name in self.recovery_strategies:
            return self.recovery_strategies[name](error)
        return None

    def _suggest_connection_recovery(self, error: Exception) -> str:
        return "Check network connectivity and DNS resolution, then retry after a short delay."

    def _suggest_rate_limit_recovery(self, error: Exception) -> str:
        return "Backend quota reached. Raise the scheduler min interval or wait for the quota window to reset."

    def _suggest_timeout_recovery(self, error: Exception) -> str:
        return "Operation timed out. The source may be slow; adaptive timeouts will widen on the next run."

    def detect_error_patterns(self) -> List[str]:
        patterns: List[str] = []
        tuple_counts: Dict[Tuple[str, str], int] = defaultdict(int)
        for ctx in self.error_history:
            tuple_counts[(ctx.error_type, ctx.service)] += 1

        for (etype, service), count in tuple_counts.items():
            if count >= 3:
                patterns.append(f"Repeated pattern: {etype} in {service} occurred {count} times recently")
        return patterns

    def get_error_statistics(self) -> Dict[str, Any]:
        by_service: Dict[str, int] = defaultdict(int)
        for ctx in self.error_history:
            by_service[ctx.service] += 1
        return {
            'total_errors': sum(self.error_counts.values()),
            'error_types': dict(self.error_counts),
            'by_service': dict(by_service),
        }


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Per-key circuit breaker.

    Opens after ``failure_threshold`` consecutive failures, lets a probe through
    once ``recovery_timeout`` seconds have passed (half-open), and closes again
    after ``success_threshold`` consecutive successes. A failure while half-open
    reopens the circuit.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        success_threshold: int = 3,
        recovery_timeout: float = 15 * 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = failure_threshold
        self.success_threshold = success_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock
        self.failure_counts: Dict[str, int] = defaultdict(int)
        self.success_counts: Dict[str, int] = defaultdict(int)
        self.circuit_states: Dict[str, Tuple[CircuitState, float]] = {}
        self.logger = logging.getLogger(__name__)

    def state(self, key: str) -> CircuitState:
        status, opened_at = self.circuit_states.get(key, (CircuitState.CLOSED, 0.0))
        if status == CircuitState.OPEN and self._clock() - opened_at >= self.recovery_timeout:
            self.circuit_states[key] = (CircuitState.HALF_OPEN, self._clock())
            self.success_counts[key] = 0
            return CircuitState.HALF_OPEN
        return status

    def record_success(self, key: str) -> None:
        state = self.state(key)
        self.failure_counts[key] = 0
        if state == CircuitState.HALF_OPEN:
            self.success_counts[key] += 1
            if self.success_counts[key] >= self.success_threshold:
                self.circuit_states[key] = (CircuitState.CLOSED, self._clock())
                self.logger.info(f"🔌 Circuit closed for {key}")
        elif state == CircuitState.CLOSED:
            self.circuit_states[key] = (CircuitState.CLOSED, self._clock())

    def record_failure(self, key: str) -> None:
        state = self.state(key)
        self.failure_counts[key] += 1
        self.success_counts[key] = 0
        if state == CircuitState.HALF_OPEN or self.failure_counts[key] >= self.failure_threshold:
            self.circuit_states[key] = (CircuitState.OPEN, self._clock())
            self.logger.warning(
                f"⚡ Circuit opened for {key} ({self.failure_counts[key]} consecutive failures)"
            )

    def is_open(self, key: str) -> bool:
        return self.state(key) == CircuitState.OPEN

    def should_attempt(self, key: str) -> bool:
        return not self.is_open(key)

    def reset(self, key: str) -> None:
        self.circuit_states.pop(key, None)
        self.failure_counts.pop(key, None)
        self.success_counts.pop(key, None)
