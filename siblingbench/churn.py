"""
Cluster membership churn

Makes the second node of the cluster leave and rejoin through the first one,
a configurable number of times, while the workload keeps running.
"""

import logging
import time
from typing import Callable, Sequence

from siblingbench.cluster import ClusterController
from siblingbench.errors import ChurnTimeout

logger = logging.getLogger(__name__)


class ChurnInjector:
    def __init__(
        self,
        controller: ClusterController,
        nodes: Sequence[str],
        settle_seconds: float = 1.0,
        unreachable_timeout: float = 60.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.controller = controller
        self.nodes = tuple(nodes)
        self.settle_seconds = settle_seconds
        self.unreachable_timeout = unreachable_timeout
        self._sleep = sleep

    def run(self, cycles: int) -> int:
        """Run `cycles` leave/rejoin cycles back to back; returns cycles done."""
        if cycles <= 0:
            return 0
        if len(self.nodes) < 2:
            raise ValueError(
                f"churn needs at least two nodes, got {len(self.nodes)}"
            )

        primary, secondary = self.nodes[0], self.nodes[1]
        for cycle in range(1, cycles + 1):
            logger.info("churn %d/%d: leaving %s", cycle, cycles, secondary)
            self.controller.leave(secondary)
            if not self.controller.wait_until_unreachable(
                secondary, self.unreachable_timeout
            ):
                raise ChurnTimeout(secondary, self.unreachable_timeout)
            self._sleep(self.settle_seconds)

            logger.info("churn %d/%d: joining %s again", cycle, cycles, secondary)
            self.controller.start_and_wait(secondary)
            self.controller.staged_join(secondary, primary)
            self.controller.plan_and_commit(secondary)
            self._sleep(self.settle_seconds)
        return cycles
