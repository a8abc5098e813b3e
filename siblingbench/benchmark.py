#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Sibling convergence benchmark

Production Pattern: many clients blindly overwriting one hot key of an
eventually consistent, replicated store
Real-world scenarios: shared configuration objects, status blobs, counters
kept in object storage

What it checks:
- Concurrent PUTs to the same key from `write_concurrency` writers
- Conflicting versions (siblings) reported by the storage nodes
- Convergence while a node leaves and rejoins the cluster
- The peak sibling count stays within write_concurrency + 5

The extra 5 accounts for background work inside the store (garbage
collection, manifest cleanup) that writes to the same key on its own.

Phases run strictly in order:

    SETUP -> VERIFY_EMPTY -> SEED -> BASELINE_STATS -> RUN -> SLEEP -> CHURN
    -> STOP_ACTORS -> COLLECT_RESULT -> ASSERT_BOUND -> FINAL_STATS
    -> TEARDOWN -> VERIFY_CLEAN

Any failure aborts the remaining phases. By default the bucket and key are
left in place for post-mortem debugging; set ``cleanup_on_failure`` to tear
them down on a best-effort basis instead.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Sequence

from siblingbench.actors import Actor, Reader, SamplerResult, StatsSampler, Writer
from siblingbench.churn import ChurnInjector
from siblingbench.cluster import ClusterController
from siblingbench.config import RunConfig, StoreSettings
from siblingbench.errors import BoundViolation, ConfigError, PreconditionFailure
from siblingbench.replica import (
    HistoryDecoder,
    RawReplicaAccessor,
    decode_json_history,
    log_counts,
)
from siblingbench.stats import SiblingObservation, StatsCollector

logger = logging.getLogger(__name__)


class Phase(Enum):
    SETUP = "setup"
    VERIFY_EMPTY = "verify_empty"
    SEED = "seed"
    BASELINE_STATS = "baseline_stats"
    RUN = "run"
    SLEEP = "sleep"
    CHURN = "churn"
    STOP_ACTORS = "stop_actors"
    COLLECT_RESULT = "collect_result"
    ASSERT_BOUND = "assert_bound"
    FINAL_STATS = "final_stats"
    TEARDOWN = "teardown"
    VERIFY_CLEAN = "verify_clean"


@dataclass
class BenchmarkResult:
    max_siblings_ever: int
    write_concurrency: int
    bound: int
    elapsed: float
    phases: List[Phase] = field(default_factory=list)
    observations: List[SiblingObservation] = field(default_factory=list)


class SiblingBenchmark:
    """Drives one benchmark run against a live cluster"""

    def __init__(
        self,
        run_config: RunConfig,
        store,
        collector: StatsCollector,
        controller: ClusterController,
        nodes: Sequence[str],
        replica: Optional[RawReplicaAccessor] = None,
        decoder: HistoryDecoder = decode_json_history,
        store_settings: Optional[StoreSettings] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = run_config
        self.store = store
        self.collector = collector
        self.controller = controller
        self.nodes = tuple(nodes)
        self.replica = replica
        self.decoder = decoder
        self.store_settings = store_settings or StoreSettings.for_run(run_config)
        self._sleep = sleep
        self._clock = clock

        self.phases: List[Phase] = []
        self.observations: List[SiblingObservation] = []
        self.reader: Optional[Reader] = None
        self.writers: List[Writer] = []
        self.sampler: Optional[StatsSampler] = None
        self._seeded = False

    @property
    def active_actors(self) -> List[Actor]:
        actors: List[Actor] = []
        if self.reader is not None:
            actors.append(self.reader)
        actors.extend(self.writers)
        if self.sampler is not None:
            actors.append(self.sampler)
        return actors

    def _enter(self, phase: Phase) -> None:
        logger.debug("phase %s", phase.value)
        self.phases.append(phase)

    def _verify_no_buckets(self, phase: Phase) -> None:
        buckets = self.store.list_buckets()
        if buckets:
            raise PreconditionFailure(phase.value, buckets)

    def _log_counts(self) -> None:
        log_counts(
            self.replica, self.nodes, self.config.bucket, self.config.key, self.decoder
        )

    # ----------------------------------------------------------------------------------
    # Actors
    # ----------------------------------------------------------------------------------

    def _start_actors(self) -> None:
        cfg = self.config
        self.sampler = StatsSampler(
            self.collector,
            self.nodes,
            cfg.sampler_interval,
            cfg.bucket,
            cfg.key,
            replica=self.replica,
            decoder=self.decoder,
        ).start()

        logger.info("write_concurrency: %d", cfg.write_concurrency)
        for i in range(cfg.write_concurrency):
            # Stagger writer start-up by one write interval each.
            self._sleep(cfg.writer_interval)
            writer = Writer(
                self.store,
                cfg.bucket,
                cfg.key,
                cfg.writer_interval,
                payload_size=cfg.payload_size,
                name=f"writer-{i + 1}",
            )
            self.writers.append(writer.start())

        self.reader = Reader(
            self.store, cfg.bucket, cfg.key, cfg.reader_interval
        ).start()

    def _stop_actors(self) -> SamplerResult:
        # Sampler goes last so its closing snapshot sees no active writer.
        if self.reader is not None:
            self.reader.stop()
            self.reader = None
        while self.writers:
            self.writers[0].stop()
            self.writers.pop(0)

        result = self.sampler.stop()
        self.observations = list(self.sampler.observations)
        self.sampler = None
        return result

    def _cleanup_after_failure(self) -> None:
        logger.info("cleaning up after failed run")
        for actor in self.active_actors:
            try:
                actor.stop()
            except Exception as e:
                logger.warning("%s failed while stopping: %s", actor.name, e)
        self.reader = None
        self.writers = []
        self.sampler = None

        if not self._seeded:
            return
        for name, action, args in (
            ("delete_object", self.store.delete_object, (self.config.bucket, self.config.key)),
            ("delete_bucket", self.store.delete_bucket, (self.config.bucket,)),
        ):
            try:
                action(*args)
            except Exception as e:
                logger.warning("cleanup %s%s failed: %s", name, args, e)

    # ----------------------------------------------------------------------------------
    # Run
    # ----------------------------------------------------------------------------------

    def run(self) -> BenchmarkResult:
        try:
            return self._run()
        except Exception:
            if self.config.cleanup_on_failure:
                self._cleanup_after_failure()
            raise

    def _run(self) -> BenchmarkResult:
        cfg = self.config
        started = self._clock()
        if cfg.churn_cycles > 0 and len(self.nodes) < 2:
            raise ConfigError(
                f"churn_cycles={cfg.churn_cycles} needs at least two nodes, "
                f"got {len(self.nodes)}"
            )

        self._enter(Phase.SETUP)
        self.controller.setup(self.store_settings, cfg.version)

        self._enter(Phase.VERIFY_EMPTY)
        self._verify_no_buckets(Phase.VERIFY_EMPTY)

        self._enter(Phase.SEED)
        logger.info("creating bucket %s", cfg.bucket)
        self.store.create_bucket(cfg.bucket)
        self._seeded = True
        self.store.put_object(cfg.bucket, cfg.key, cfg.seed_payload)

        self._enter(Phase.BASELINE_STATS)
        self._log_counts()

        self._enter(Phase.RUN)
        logger.info("====================== run benchmark =====================")
        self._start_actors()

        self._enter(Phase.SLEEP)
        self._sleep(cfg.duration_seconds)

        self._enter(Phase.CHURN)
        ChurnInjector(
            self.controller,
            self.nodes,
            settle_seconds=cfg.settle_seconds,
            unreachable_timeout=cfg.unreachable_timeout,
            sleep=self._sleep,
        ).run(cfg.churn_cycles)

        self._enter(Phase.STOP_ACTORS)
        sampler_result = self._stop_actors()
        logger.info("====================== benchmark done ====================")

        self._enter(Phase.COLLECT_RESULT)
        max_siblings = sampler_result.max_siblings_ever
        logger.info("MaxSib:Concurrency = %d:%d", max_siblings, cfg.write_concurrency)

        self._enter(Phase.ASSERT_BOUND)
        if max_siblings > cfg.sibling_bound:
            raise BoundViolation(max_siblings, cfg.write_concurrency, cfg.sibling_bound)

        self._enter(Phase.FINAL_STATS)
        self._log_counts()

        self._enter(Phase.TEARDOWN)
        self.store.delete_object(cfg.bucket, cfg.key)
        logger.info("deleting bucket %s", cfg.bucket)
        self.store.delete_bucket(cfg.bucket)
        self._seeded = False

        self._enter(Phase.VERIFY_CLEAN)
        self._verify_no_buckets(Phase.VERIFY_CLEAN)
        logger.info("User is valid on the cluster, and has no buckets")

        return BenchmarkResult(
            max_siblings_ever=max_siblings,
            write_concurrency=cfg.write_concurrency,
            bound=cfg.sibling_bound,
            elapsed=self._clock() - started,
            phases=list(self.phases),
            observations=list(self.observations),
        )
