# File: backend/simulation_config.py
#
# Centralised configuration. Every knob is read from an environment variable
# with a default, so the same engine runs unchanged in tests, locally and
# behind the API.

import os
from dataclasses import dataclass, field
from typing import Optional, Tuple


def _env_int(name, default):
    raw = os.getenv(name)
    return int(raw) if raw not in (None, "") else default


def _env_float(name, default):
    raw = os.getenv(name)
    return float(raw) if raw not in (None, "") else default


def _env_optional_int(name):
    raw = os.getenv(name)
    return int(raw) if raw not in (None, "") else None


def _env_bool(name, default):
    raw = os.getenv(name)
    if raw in (None, ""):
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class EngineLimits:
    """Guards against adversarial expressions."""
    max_expression_length: int = field(
        default_factory=lambda: _env_int("ROI_MAX_EXPRESSION_LENGTH", 4000))
    # parentheses / unary signs / calls nested inside each other
    max_nesting: int = field(default_factory=lambda: _env_int("ROI_MAX_NESTING", 64))
    # depth of the finished tree, long a+b+c chains included
    max_depth: int = field(default_factory=lambda: _env_int("ROI_MAX_DEPTH", 256))


@dataclass(frozen=True)
class HorizonConfig:
    """Multi-year split of aggregated benefits and costs."""
    growth: Tuple[float, ...] = (1.0, 1.07, 1.15)       # applied to benefits
    efficiency: Tuple[float, ...] = (1.0, 0.95, 0.90)   # applied to costs
    default_discount_rate: float = field(
        default_factory=lambda: _env_float("ROI_DISCOUNT_RATE", 0.25))
    discount_rate_id: str = "discount_rate"

    def __post_init__(self):
        if len(self.growth) != len(self.efficiency):
            raise ValueError("growth and efficiency multipliers must cover the same years")
        if not self.growth:
            raise ValueError("horizon must cover at least one year")

    @property
    def years(self) -> int:
        return len(self.growth)

    @property
    def months(self) -> int:
        return 12 * self.years


@dataclass(frozen=True)
class SimulationConfig:
    iterations: int = field(default_factory=lambda: _env_int("ROI_ITERATIONS", 5000))
    max_iterations: int = field(default_factory=lambda: _env_int("ROI_MAX_ITERATIONS", 200_000))
    seed: Optional[int] = field(default_factory=lambda: _env_optional_int("ROI_SEED"))
    batch_size: int = field(default_factory=lambda: _env_int("ROI_BATCH_SIZE", 1000))
    workers: int = field(default_factory=lambda: _env_int("ROI_WORKERS", 1))
    executor: str = field(default_factory=lambda: os.getenv("ROI_EXECUTOR", "process"))  # process | thread
    check_interval: int = 250        # trials between cancellation checks inside a batch
    poll_seconds: float = 0.05       # how often a waiting driver re-checks cancellation
    top_k: int = field(default_factory=lambda: _env_int("ROI_TOP_K", 8))
    horizon: HorizonConfig = field(default_factory=HorizonConfig)
    limits: EngineLimits = field(default_factory=EngineLimits)

    def __post_init__(self):
        if self.batch_size < 1:
            raise ValueError("batch_size must be positive")
        if self.workers < 1:
            raise ValueError("workers must be positive")
        if self.executor not in ("process", "thread"):
            raise ValueError(f"executor must be 'process' or 'thread', got {self.executor!r}")


@dataclass(frozen=True)
class ApiConfig:
    host: str = field(default_factory=lambda: os.getenv("ROI_API_HOST", "127.0.0.1"))
    port: int = field(default_factory=lambda: _env_int("ROI_API_PORT", 5000))
    debug: bool = field(default_factory=lambda: _env_bool("ROI_API_DEBUG", False))


@dataclass(frozen=True)
class LogConfig:
    level: str = field(default_factory=lambda: os.getenv("ROI_LOG_LEVEL", "INFO"))
    log_dir: Optional[str] = field(default_factory=lambda: os.getenv("ROI_LOG_DIR") or None)
