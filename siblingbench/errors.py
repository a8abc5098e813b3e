"""
Failure taxonomy for sibling benchmark runs

Every fatal outcome derives from AssertionError so the surrounding test
runner reports it as a failed assertion rather than an error.
"""

from typing import List


class BenchmarkFailure(AssertionError):
    """Base class for fatal, non-recoverable benchmark outcomes"""


class PreconditionFailure(BenchmarkFailure):
    """The bucket list was not empty before setup or after teardown"""

    def __init__(self, phase: str, buckets: List[str]):
        self.phase = phase
        self.buckets = list(buckets)
        super().__init__(f"{phase}: expected no buckets, found {self.buckets}")


class BoundViolation(BenchmarkFailure):
    """Observed sibling count exceeded write concurrency plus tolerance"""

    def __init__(self, max_siblings: int, write_concurrency: int, bound: int):
        self.max_siblings = max_siblings
        self.write_concurrency = write_concurrency
        self.bound = bound
        super().__init__(
            f"max siblings {max_siblings} exceeds bound {bound} "
            f"(write_concurrency={write_concurrency})"
        )


class ChurnTimeout(BenchmarkFailure):
    """A leaving node did not become unreachable in time"""

    def __init__(self, node: str, timeout: float):
        self.node = node
        self.timeout = timeout
        super().__init__(f"node {node} still reachable after {timeout}s")


class ConfigError(ValueError):
    """Invalid benchmark configuration"""
