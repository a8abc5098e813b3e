"""
Raw replica access for sibling diagnostics

Reads a key straight from the storage nodes, bypassing the S3 front end, to
count the conflicting versions currently stored and the length of the
history list embedded in each. This is debug output only: nothing here may
influence whether a run passes.
"""

import hashlib
import http.client
import json
import logging
import urllib.error
import urllib.parse
import urllib.request
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple, Union

from siblingbench.config import split_node

logger = logging.getLogger(__name__)

BucketName = Union[str, bytes]
HistoryDecoder = Callable[[bytes], list]


@dataclass(frozen=True)
class RawObject:
    value_count: int
    values: Tuple[bytes, ...]


@dataclass(frozen=True)
class SiblingCounts:
    sibling_count: int
    history_counts: Tuple[int, ...]


class RawReplicaAccessor(ABC):
    @abstractmethod
    def get_raw_object(self, nodes: Sequence[str], bucket: str, key: str) -> RawObject:
        """Return every stored version of bucket/key."""


def decode_json_history(value: bytes) -> list:
    history = json.loads(value.decode("utf-8"))
    if not isinstance(history, list):
        raise ValueError("history value is not a list")
    return history


def manifest_bucket(bucket: str) -> bytes:
    """Internal bucket holding the object manifests of an S3 bucket."""
    return b"0o:" + hashlib.md5(bucket.encode()).digest()


class HttpRawReplicaAccessor(RawReplicaAccessor):
    """Fetches raw values over the storage node HTTP interface

    A key with siblings answers ``300 Multiple Choices`` with one vtag per
    line; each sibling is then fetched with ``?vtag=``. The first node that
    answers is used.
    """

    def __init__(
        self,
        port: int = 8098,
        timeout: float = 5.0,
        bucket_mapper: Optional[Callable[[str], BucketName]] = None,
    ):
        self.port = port
        self.timeout = timeout
        self.bucket_mapper = bucket_mapper

    def key_url(self, node: str, bucket: str, key: str) -> str:
        _, host = split_node(node)
        raw_bucket = self.bucket_mapper(bucket) if self.bucket_mapper else bucket
        return "http://{}:{}/buckets/{}/keys/{}".format(
            host,
            self.port,
            urllib.parse.quote(raw_bucket, safe=""),
            urllib.parse.quote(key, safe=""),
        )

    def _get(self, url: str) -> Tuple[int, bytes]:
        req = urllib.request.Request(url, headers={"Accept": "*/*"})
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as response:
                return response.status, response.read()
        except urllib.error.HTTPError as e:
            if e.code in (300, 404):
                return e.code, e.read()
            raise

    def _fetch_from(self, node: str, bucket: str, key: str) -> RawObject:
        url = self.key_url(node, bucket, key)
        status, body = self._get(url)
        if status == 404:
            return RawObject(value_count=0, values=())
        if status != 300:
            return RawObject(value_count=1, values=(body,))

        vtags = [
            line.strip()
            for line in body.decode("utf-8").splitlines()[1:]
            if line.strip()
        ]
        values = []
        for vtag in vtags:
            _, value = self._get(f"{url}?vtag={urllib.parse.quote(vtag)}")
            values.append(value)
        return RawObject(value_count=len(values), values=tuple(values))

    def get_raw_object(self, nodes: Sequence[str], bucket: str, key: str) -> RawObject:
        last_error: Optional[Exception] = None
        for node in nodes:
            try:
                return self._fetch_from(node, bucket, key)
            except (urllib.error.URLError, http.client.HTTPException, OSError) as e:
                logger.debug("raw fetch from %s failed: %s", node, e)
                last_error = e
        raise ConnectionError(f"no node answered for {bucket}/{key}") from last_error


def get_counts(
    accessor: RawReplicaAccessor,
    nodes: Sequence[str],
    bucket: str,
    key: str,
    decoder: HistoryDecoder = decode_json_history,
) -> SiblingCounts:
    """Count stored siblings and the history length of each non-empty one."""
    raw = accessor.get_raw_object(nodes, bucket, key)
    histories: List[list] = [decoder(v) for v in raw.values if v != b""]
    counts = SiblingCounts(
        sibling_count=raw.value_count,
        history_counts=tuple(len(h) for h in histories),
    )
    logger.info(
        "SiblingCount: %d, HistoryCounts: %s",
        counts.sibling_count,
        list(counts.history_counts),
    )
    return counts


def log_counts(
    accessor: Optional[RawReplicaAccessor],
    nodes: Sequence[str],
    bucket: str,
    key: str,
    decoder: HistoryDecoder = decode_json_history,
) -> Optional[SiblingCounts]:
    """Best-effort wrapper around get_counts; failures are only logged."""
    if accessor is None:
        return None
    try:
        return get_counts(accessor, nodes, bucket, key, decoder)
    except Exception as e:
        logger.warning("sibling diagnostic failed for %s/%s: %s", bucket, key, e)
        return None
