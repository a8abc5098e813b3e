"""
Workload and sampling actors

Every actor is a daemon thread running ``step(); wait(interval)`` until it
is told to stop. The wait is a blocking read on the actor's control queue,
so a stop request is only noticed between operations: a put or get that is
already in flight always completes.

Stopping is a handshake. The stopper puts its own reply queue on the control
queue and blocks until the actor answers on it. If the actor died from an
exception instead, ``stop()`` re-raises that exception in the stopper's
thread.
"""

import logging
import os
import queue
import threading
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence

from siblingbench.replica import (
    HistoryDecoder,
    RawReplicaAccessor,
    decode_json_history,
    log_counts,
)
from siblingbench.stats import (
    SiblingObservation,
    StatKind,
    StatsCollector,
    extract,
    log_aggregates,
    observe_siblings,
)

logger = logging.getLogger(__name__)

STOP_POLL_SECONDS = 0.1


class Actor:
    """Base class for independently scheduled wait/act loops"""

    def __init__(self, interval: float, name: Optional[str] = None):
        self.interval = interval
        self.name = name or type(self).__name__.lower()
        self.iterations = 0
        self.error: Optional[BaseException] = None
        self._control: "queue.Queue[queue.Queue]" = queue.Queue()
        self._thread = threading.Thread(target=self._main, name=self.name, daemon=True)

    def step(self) -> None:
        raise NotImplementedError

    def reply(self) -> Any:
        return "ok"

    def start(self) -> "Actor":
        self._thread.start()
        return self

    def is_alive(self) -> bool:
        return self._thread.is_alive()

    def _main(self) -> None:
        try:
            while True:
                self.step()
                self.iterations += 1
                try:
                    reply_to = self._control.get(timeout=self.interval)
                except queue.Empty:
                    continue
                reply_to.put(self.reply())
                return
        except Exception as e:
            self.error = e
            logger.exception("%s died after %d iterations", self.name, self.iterations)

    def stop(self) -> Any:
        """Ask the actor to stop and block until it acknowledges."""
        reply_to: "queue.Queue[Any]" = queue.Queue(maxsize=1)
        self._control.put(reply_to)
        while True:
            try:
                result = reply_to.get(timeout=STOP_POLL_SECONDS)
                break
            except queue.Empty:
                if self._thread.is_alive():
                    continue
            # The thread may have answered right before exiting.
            try:
                result = reply_to.get_nowait()
                break
            except queue.Empty:
                pass
            if self.error is not None:
                raise self.error
            raise RuntimeError(f"{self.name} exited without acknowledging stop")
        self._thread.join()
        logger.debug("%s stopped after %d iterations", self.name, self.iterations)
        return result


class Writer(Actor):
    """Puts a fresh random payload to the target key every interval"""

    def __init__(
        self,
        client,
        bucket: str,
        key: str,
        interval: float,
        payload_size: int = 400,
        name: Optional[str] = None,
    ):
        super().__init__(interval, name=name)
        self.client = client
        self.bucket = bucket
        self.key = key
        self.payload_size = payload_size

    def step(self) -> None:
        self.client.put_object(self.bucket, self.key, os.urandom(self.payload_size))


class Reader(Actor):
    """Reads the target key every interval"""

    def __init__(
        self, client, bucket: str, key: str, interval: float, name: Optional[str] = None
    ):
        super().__init__(interval, name=name)
        self.client = client
        self.bucket = bucket
        self.key = key

    def step(self) -> None:
        self.client.get_object_body(self.bucket, self.key)


@dataclass(frozen=True)
class SamplerResult:
    ok: bool
    max_siblings_ever: int
    ticks: int


class StatsSampler(Actor):
    """Polls node statistics and tracks the peak sibling count of the run

    The first tick runs as soon as the thread starts. On stop one more
    collection is taken synchronously before replying, so the result
    includes everything written up to the moment the writers were stopped.
    """

    def __init__(
        self,
        collector: StatsCollector,
        nodes: Sequence[str],
        interval: float,
        bucket: str,
        key: str,
        replica: Optional[RawReplicaAccessor] = None,
        decoder: HistoryDecoder = decode_json_history,
    ):
        super().__init__(interval, name="stats-sampler")
        self.collector = collector
        self.nodes = tuple(nodes)
        self.bucket = bucket
        self.key = key
        self.replica = replica
        self.decoder = decoder
        self.max_siblings_ever = 0
        self.observations: List[SiblingObservation] = []

    def check_stats(self) -> SiblingObservation:
        snapshot = self.collector.get_stats(self.nodes)
        if len(snapshot) < len(self.nodes):
            logger.warning(
                "stats from %d of %d nodes", len(snapshot), len(self.nodes)
            )

        observation = observe_siblings(snapshot, self.max_siblings_ever)
        for kind in StatKind:
            log_aggregates(kind, extract(kind, snapshot))

        self.max_siblings_ever = observation.max_siblings_ever
        self.observations.append(observation)

        log_counts(self.replica, self.nodes, self.bucket, self.key, self.decoder)
        return observation

    def step(self) -> None:
        self.check_stats()

    def reply(self) -> SamplerResult:
        self.check_stats()
        return SamplerResult(
            ok=True,
            max_siblings_ever=self.max_siblings_ever,
            ticks=len(self.observations),
        )
