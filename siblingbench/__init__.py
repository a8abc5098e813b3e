"""
Sibling convergence benchmark for S3-compatible replicated object stores.

Drives concurrent writers against one key, samples per-node sibling
statistics, optionally churns cluster membership, and asserts that the
peak sibling count stays within the configured write concurrency plus a
small tolerance.
"""

from siblingbench.benchmark import BenchmarkResult, Phase, SiblingBenchmark
from siblingbench.config import BenchmarkConfig, RunConfig, StoreSettings, load_config
from siblingbench.errors import (
    BenchmarkFailure,
    BoundViolation,
    ChurnTimeout,
    ConfigError,
    PreconditionFailure,
)

__version__ = "1.0.0"
__all__ = [
    "BenchmarkConfig",
    "BenchmarkFailure",
    "BenchmarkResult",
    "BoundViolation",
    "ChurnTimeout",
    "ConfigError",
    "Phase",
    "PreconditionFailure",
    "RunConfig",
    "SiblingBenchmark",
    "StoreSettings",
    "load_config",
]
