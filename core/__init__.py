"""
core - Core data structures, interfaces, and utilities

This module contains the canonical data contracts, the exception
hierarchy and the logging setup used throughout the simulation engine.

Modules:
- contracts: Data contracts and interfaces
- exceptions: Error hierarchy with error codes
- logging_config: Two-channel logging
"""

from .contracts import (
    # Enums
    Direction,
    SignalAction,
    ExitReason,
    PositionState,

    # Data contracts
    Candle,
    Signal,
    Position,
    ClosedTrade,
    EquityPoint,
    RunResult,

    # Interfaces
    ISignalSource,
    resolve_signal_source,

    # Time
    as_utc,

    # Validation
    validate_signal,
    validate_candles,

    # Factory functions
    candles_from_frame,
)

from .exceptions import (
    ErrorCode,
    SimulationError,
    DataError,
    InsufficientDataError,
    CandleOrderError,
    ConfigurationError,
    PersistenceError,
)

from .logging_config import setup_logging

__all__ = [
    # Enums
    'Direction',
    'SignalAction',
    'ExitReason',
    'PositionState',

    # Data contracts
    'Candle',
    'Signal',
    'Position',
    'ClosedTrade',
    'EquityPoint',
    'RunResult',

    # Interfaces
    'ISignalSource',
    'resolve_signal_source',

    # Time
    'as_utc',

    # Validation
    'validate_signal',
    'validate_candles',

    # Factory functions
    'candles_from_frame',

    # Exceptions
    'ErrorCode',
    'SimulationError',
    'DataError',
    'InsufficientDataError',
    'CandleOrderError',
    'ConfigurationError',
    'PersistenceError',

    # Logging
    'setup_logging',
]
