"""
sim-core: pure, I/O-free building blocks of the simulator.

Contracts (Bar, StrategySpec), clocks, the seeded random source, metrics and
strategy assessment. No dependency on execution/backtest at import time.
"""

from sim_core.assessment import (
    AssessmentThresholds,
    PerformanceTier,
    StrategyAssessment,
    assess_strategy,
    compare_results,
)
from sim_core.clock import (
    Clock,
    ClockError,
    ClockMode,
    RealtimeClock,
    TestClock,
    TimeEvent,
    create_clock,
    datetime_to_nanos,
    get_realtime_clock,
    nanos_to_datetime,
)
from sim_core.contracts import (
    Bar,
    InvalidInputError,
    RiskParameters,
    StrategySpec,
    StrategyType,
    validate_bar,
)
from sim_core.metrics import PerformanceMetrics, compute_metrics
from sim_core.random_source import SeededRandom

__all__ = [
    "AssessmentThresholds",
    "Bar",
    "Clock",
    "ClockError",
    "ClockMode",
    "InvalidInputError",
    "PerformanceMetrics",
    "PerformanceTier",
    "RealtimeClock",
    "RiskParameters",
    "SeededRandom",
    "StrategyAssessment",
    "StrategySpec",
    "StrategyType",
    "TestClock",
    "TimeEvent",
    "assess_strategy",
    "compare_results",
    "compute_metrics",
    "create_clock",
    "datetime_to_nanos",
    "get_realtime_clock",
    "nanos_to_datetime",
    "validate_bar",
]
