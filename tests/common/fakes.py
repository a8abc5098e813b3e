"""
In-memory stand-ins for the external collaborators

They record every call so tests can check ordering, and they are safe to
use from several actor threads at once.
"""

import itertools
import threading
from typing import Dict, List, Optional, Sequence, Set, Tuple

from botocore.exceptions import ClientError

from siblingbench.cluster import ClusterController
from siblingbench.replica import RawObject, RawReplicaAccessor
from siblingbench.stats import StatsCollector, StatsSnapshot, make_snapshot


def client_error(code: str, operation: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class FakeStore:
    """Bucket/object store with S3Client's interface"""

    def __init__(self, buckets: Sequence[str] = ()):
        self.lock = threading.Lock()
        self.objects: Dict[str, Dict[str, bytes]] = {b: {} for b in buckets}
        self.calls: List[Tuple[str, str]] = []
        self.puts = 0
        self.gets = 0
        self.fail_puts_after: Optional[int] = None
        self.fail_gets = False

    def _record(self, operation: str, target: str) -> None:
        self.calls.append((operation, target))

    def list_buckets(self) -> List[str]:
        with self.lock:
            self._record("list_buckets", "")
            return sorted(self.objects)

    def create_bucket(self, bucket_name: str) -> dict:
        with self.lock:
            self._record("create_bucket", bucket_name)
            if bucket_name in self.objects:
                raise client_error("BucketAlreadyOwnedByYou", "CreateBucket")
            self.objects[bucket_name] = {}
            return {}

    def delete_bucket(self, bucket_name: str) -> dict:
        with self.lock:
            self._record("delete_bucket", bucket_name)
            if self.objects.get(bucket_name):
                raise client_error("BucketNotEmpty", "DeleteBucket")
            self.objects.pop(bucket_name, None)
            return {}

    def put_object(self, bucket_name: str, key: str, data: bytes) -> dict:
        with self.lock:
            self._record("put_object", f"{bucket_name}/{key}")
            if self.fail_puts_after is not None and self.puts >= self.fail_puts_after:
                raise client_error("ServiceUnavailable", "PutObject")
            if bucket_name not in self.objects:
                raise client_error("NoSuchBucket", "PutObject")
            self.objects[bucket_name][key] = data
            self.puts += 1
            return {"ETag": '"fake"'}

    def get_object_body(self, bucket_name: str, key: str) -> bytes:
        with self.lock:
            self._record("get_object", f"{bucket_name}/{key}")
            if self.fail_gets:
                raise client_error("ServiceUnavailable", "GetObject")
            self.gets += 1
            try:
                return self.objects[bucket_name][key]
            except KeyError:
                raise client_error("NoSuchKey", "GetObject") from None

    def delete_object(self, bucket_name: str, key: str) -> dict:
        with self.lock:
            self._record("delete_object", f"{bucket_name}/{key}")
            self.objects.get(bucket_name, {}).pop(key, None)
            return {}


def node_stats(siblings_max: float, siblings_mean: float = 1.0) -> dict:
    return {
        "node_get_fsm_siblings_mean": siblings_mean,
        "node_get_fsm_siblings_100": siblings_max,
        "node_get_fsm_objsize_mean": 420,
        "node_get_fsm_objsize_100": 2100,
        "node_get_fsm_time_mean": 1500,
        "node_get_fsm_time_100": 9000,
    }


class FakeStatsCollector(StatsCollector):
    """Replays a scripted sequence of per-node sibling maxima

    Each call consumes the next entry of `script` (one value per node); the
    last entry repeats forever. Nodes listed in `silent` never answer.
    """

    def __init__(self, script: Sequence[Sequence[float]] = ((1, 1, 1, 1),), silent: Set[int] = frozenset()):
        self.lock = threading.Lock()
        self._script = itertools.chain(script, itertools.repeat(script[-1]))
        self.silent = set(silent)
        self.calls = 0

    def get_stats(self, nodes: Sequence[str]) -> StatsSnapshot:
        with self.lock:
            self.calls += 1
            values = next(self._script)
        return make_snapshot(
            [
                node_stats(values[i % len(values)])
                for i in range(len(nodes))
                if i not in self.silent
            ]
        )


class FakeClusterController(ClusterController):
    def __init__(self, becomes_unreachable: bool = True):
        self.becomes_unreachable = becomes_unreachable
        self.calls: List[Tuple] = []

    def setup(self, settings, version):
        self.calls.append(("setup", settings, version))

    def leave(self, node):
        self.calls.append(("leave", node))

    def wait_until_unreachable(self, node, timeout):
        self.calls.append(("wait_until_unreachable", node))
        return self.becomes_unreachable

    def start_and_wait(self, node):
        self.calls.append(("start_and_wait", node))

    def staged_join(self, node, target):
        self.calls.append(("staged_join", node, target))

    def plan_and_commit(self, node):
        self.calls.append(("plan_and_commit", node))

    def operations(self) -> List[str]:
        return [c[0] for c in self.calls]


class FakeReplica(RawReplicaAccessor):
    def __init__(self, values: Sequence[bytes] = (), error: Optional[Exception] = None):
        self.values = tuple(values)
        self.error = error
        self.calls = 0

    def get_raw_object(self, nodes, bucket, key):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return RawObject(value_count=len(self.values), values=self.values)
