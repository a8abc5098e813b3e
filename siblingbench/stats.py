"""
Per-node statistics: collection and extraction

A snapshot is one poll of every responsive node. Sibling, object size and
latency aggregates are read from it through a fixed table of stat names.
"""

import http.client
import json
import logging
import math
import urllib.error
import urllib.request
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from siblingbench.config import split_node

logger = logging.getLogger(__name__)

StatsSnapshot = Tuple[Mapping[str, Any], ...]


class StatKind(Enum):
    SIBLINGS = "siblings"
    OBJSIZE = "objsize"
    TIME = "time"


# StatKind -> (mean stat name, 100th percentile stat name)
STAT_NAMES: Dict[StatKind, Tuple[str, str]] = {
    StatKind.SIBLINGS: ("node_get_fsm_siblings_mean", "node_get_fsm_siblings_100"),
    StatKind.OBJSIZE: ("node_get_fsm_objsize_mean", "node_get_fsm_objsize_100"),
    StatKind.TIME: ("node_get_fsm_time_mean", "node_get_fsm_time_100"),
}


@dataclass(frozen=True)
class NodeAggregate:
    mean: float
    max: float


@dataclass(frozen=True)
class SiblingObservation:
    """Sibling figures of one sampling tick"""

    mean_siblings: float
    max_siblings: int
    max_siblings_ever: int


def make_snapshot(stats: Sequence[Mapping[str, Any]]) -> StatsSnapshot:
    """Freeze raw per-node mappings into a snapshot."""
    return tuple(MappingProxyType(dict(s)) for s in stats)


def _as_number(value: Any) -> float:
    # Nodes report "undefined" until the first sample lands.
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return value
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0


def extract(kind: StatKind, snapshot: StatsSnapshot) -> List[NodeAggregate]:
    """Return the mean/max pair of `kind` for every node in the snapshot."""
    mean_name, max_name = STAT_NAMES[kind]
    return [
        NodeAggregate(
            mean=_as_number(stat.get(mean_name)), max=_as_number(stat.get(max_name))
        )
        for stat in snapshot
    ]


def log_aggregates(kind: StatKind, aggregates: Sequence[NodeAggregate]) -> None:
    means = "".join(f"\t{a.mean:g}" for a in aggregates)
    maxs = "".join(f"\t{a.max:g}" for a in aggregates)
    logger.info("%s Mean: %s", kind.value, means)
    logger.info("%s Max: %s", kind.value, maxs)


def observe_siblings(snapshot: StatsSnapshot, max_siblings_ever: int) -> SiblingObservation:
    """Fold one snapshot into the running sibling maximum."""
    aggregates = extract(StatKind.SIBLINGS, snapshot)
    # Fractional percentiles round up.
    tick_max = math.ceil(max((a.max for a in aggregates), default=0))
    tick_mean = (
        sum(a.mean for a in aggregates) / len(aggregates) if aggregates else 0.0
    )
    return SiblingObservation(
        mean_siblings=tick_mean,
        max_siblings=tick_max,
        max_siblings_ever=max(max_siblings_ever, tick_max),
    )


# --------------------------------------------------------------------------------------
# Collectors
# --------------------------------------------------------------------------------------


class StatsCollector(ABC):
    """Gathers operation statistics from cluster nodes"""

    @abstractmethod
    def get_stats(self, nodes: Sequence[str]) -> StatsSnapshot:
        """Return one mapping per responsive node; unresponsive ones are omitted."""


class HttpStatsCollector(StatsCollector):
    """Polls the ``/stats`` JSON resource of every node in parallel"""

    def __init__(self, port: int = 8098, timeout: float = 5.0):
        self.port = port
        self.timeout = timeout

    def stats_url(self, node: str) -> str:
        _, host = split_node(node)
        return f"http://{host}:{self.port}/stats"

    def fetch(self, node: str) -> Optional[Dict[str, Any]]:
        req = urllib.request.Request(
            self.stats_url(node), headers={"Accept": "application/json"}
        )
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as response:
                return json.loads(response.read().decode("utf-8"))
        except (
            urllib.error.URLError, http.client.HTTPException, OSError, ValueError
        ) as e:
            logger.warning("no stats from %s: %s", node, e)
            return None

    def get_stats(self, nodes: Sequence[str]) -> StatsSnapshot:
        if not nodes:
            return ()
        with ThreadPoolExecutor(max_workers=len(nodes)) as executor:
            results = list(executor.map(self.fetch, nodes))
        return make_snapshot([r for r in results if r is not None])
