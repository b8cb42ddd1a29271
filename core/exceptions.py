"""
core/exceptions.py - Simulation Engine Exceptions

Exception hierarchy for the simulation and analytics pipeline.

Only data-availability failures abort a run. Everything else (invalid
signals, capacity limits, degenerate ratios) is absorbed into trade and
position outcomes and never surfaces as an exception. Persistence failures
are raised by the store and logged by the caller.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Dict, Any
from enum import Enum


class ErrorCode(Enum):
    """Standard error codes for simulation operations."""
    # Data errors (3xx)
    INSUFFICIENT_DATA = "E302"
    DATA_INVALID = "E303"

    # Configuration errors (5xx)
    CONFIGURATION_ERROR = "E503"
    INTERNAL_ERROR = "E504"

    # Persistence errors (7xx)
    PERSISTENCE_FAILED = "E701"


@dataclass
class ErrorContext:
    """Rich context for errors."""
    error_code: ErrorCode
    timestamp: datetime = field(default_factory=datetime.now)
    instrument: Optional[str] = None
    additional_data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'error_code': self.error_code.value,
            'timestamp': self.timestamp.isoformat(),
            'instrument': self.instrument,
            **self.additional_data
        }


class SimulationError(Exception):
    """Base exception for all simulation errors."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.context = context or ErrorContext(error_code=error_code)
        self.cause = cause

    def __str__(self) -> str:
        return f"[{self.error_code.value}] {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'error_type': self.__class__.__name__,
            'message': self.message,
            'error_code': self.error_code.value,
            'context': self.context.to_dict() if self.context else None
        }


# ============================================================================
# Data Errors
# ============================================================================

class DataError(SimulationError):
    """Base class for input-data errors."""
    pass


class InsufficientDataError(DataError):
    """Not enough candles to warm up and simulate. Aborts the run."""

    def __init__(
        self,
        available: int,
        required: int,
        instrument: Optional[str] = None,
    ):
        super().__init__(
            f"Insufficient data: {available} candles, need {required}",
            ErrorCode.INSUFFICIENT_DATA,
            ErrorContext(
                error_code=ErrorCode.INSUFFICIENT_DATA,
                instrument=instrument,
                additional_data={'available': available, 'required': required}
            ),
        )
        self.available = available
        self.required = required


class CandleOrderError(DataError):
    """Candle sequence is not strictly increasing in open time."""

    def __init__(self, index: int, previous: datetime, current: datetime):
        super().__init__(
            f"Candle {index} open_time {current} is not after {previous}",
            ErrorCode.DATA_INVALID,
            ErrorContext(
                error_code=ErrorCode.DATA_INVALID,
                additional_data={'index': index}
            ),
        )
        self.index = index


# ============================================================================
# Configuration Errors
# ============================================================================

class ConfigurationError(SimulationError):
    """Invalid simulation settings."""

    def __init__(self, message: str, setting: str = ""):
        super().__init__(
            message,
            ErrorCode.CONFIGURATION_ERROR,
            ErrorContext(
                error_code=ErrorCode.CONFIGURATION_ERROR,
                additional_data={'setting': setting}
            ),
        )
        self.setting = setting


# ============================================================================
# Persistence Errors
# ============================================================================

class PersistenceError(SimulationError):
    """Result was computed but could not be saved."""

    def __init__(self, message: str, path: str = "", cause: Optional[Exception] = None):
        super().__init__(
            message,
            ErrorCode.PERSISTENCE_FAILED,
            ErrorContext(
                error_code=ErrorCode.PERSISTENCE_FAILED,
                additional_data={'path': path}
            ),
            cause
        )
        self.path = path
