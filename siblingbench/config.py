#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Benchmark configuration
=======================

Settings come from four layers, last one wins:

    1) Built-in defaults (same env names and defaults as the S3 test fixtures)
    2) A YAML file with ``s3``, ``cluster`` and ``sibling_benchmark`` sections
    3) Environment variables (S3_*, SIBLING_*)
    4) Explicit overrides (usually the CLI)

The target version selects a profile. ``current`` changes nothing;
``previous`` lets the YAML ``profiles.previous`` section and the
S3_PREVIOUS_* variables point the run at an older deployment.

Example YAML::

    s3:
      endpoint_url: http://127.0.0.1:15018
      access_key: admin-key
      secret_key: admin-secret
    cluster:
      nodes: [dev1@127.0.0.1, dev2@127.0.0.2, dev3@127.0.0.3, dev4@127.0.0.4]
      stats_port: 8098
      commands:
        leave: "riak-admin cluster leave {node}"
        ping: "riak ping -name {node}"
    sibling_benchmark:
      write_concurrency: 2
      duration_sec: 30
      leave_and_join: 0
      version: current
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, asdict, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml

from siblingbench.errors import ConfigError


DEFAULT_BUCKET = "riak-test-bucket"
DEFAULT_KEY = "riak_test_key1"

# Sized by the store's own policy for bucket listing; not tied to concurrency.
DEFAULT_BUCKET_LIST_POOL = 5
LEEWAY_SECONDS = 5
GC_INTERVAL_SECONDS = 10


# --------------------------------------------------------------------------------------
# Data Model
# --------------------------------------------------------------------------------------


@dataclass(frozen=True)
class RunConfig:
    """Read-only inputs of one benchmark run.

    Fields
    ------
    write_concurrency : int
        Number of concurrent writer actors. The sibling bound is derived
        from it.
    duration_seconds : float
        How long the workload runs before churn and shutdown.
    churn_cycles : int
        Number of leave/rejoin cycles of the secondary node. 0 disables churn.
    version : str
        Name of the version profile ("current" or "previous").
    """

    write_concurrency: int = 2
    duration_seconds: float = 16
    churn_cycles: int = 0
    version: str = "current"
    bucket: str = DEFAULT_BUCKET
    key: str = DEFAULT_KEY
    writer_interval: float = 0.1
    reader_interval: float = 1.0
    sampler_interval: float = 5.0
    payload_size: int = 400
    seed_payload: bytes = b"boom!"
    sibling_tolerance: int = 5
    settle_seconds: float = 1.0
    unreachable_timeout: float = 60.0
    cleanup_on_failure: bool = False

    def __post_init__(self):
        if self.write_concurrency < 1:
            raise ConfigError(
                f"write_concurrency must be >= 1 (got {self.write_concurrency})"
            )
        if self.churn_cycles < 0:
            raise ConfigError(f"churn_cycles must be >= 0 (got {self.churn_cycles})")
        for name in (
            "duration_seconds",
            "writer_interval",
            "reader_interval",
            "sampler_interval",
            "settle_seconds",
            "unreachable_timeout",
            "payload_size",
            "sibling_tolerance",
        ):
            if getattr(self, name) < 0:
                raise ConfigError(f"{name} must be >= 0 (got {getattr(self, name)})")
        if self.version not in VERSION_PROFILES:
            raise ConfigError(
                f"unknown version {self.version!r}; "
                f"expected one of {sorted(VERSION_PROFILES)}"
            )
        if not self.bucket or not self.key:
            raise ConfigError("bucket and key must be non-empty")

    @property
    def sibling_bound(self) -> int:
        return self.write_concurrency + self.sibling_tolerance


@dataclass(frozen=True)
class StoreSettings:
    """Configuration block applied to the store at setup"""

    request_pool: int
    bucket_list_pool: int = DEFAULT_BUCKET_LIST_POOL
    leeway_seconds: int = LEEWAY_SECONDS
    gc_interval: int = GC_INTERVAL_SECONDS

    @classmethod
    def for_run(
        cls, run: RunConfig, bucket_list_pool: int = DEFAULT_BUCKET_LIST_POOL
    ) -> "StoreSettings":
        # Two connections per writer so reads never queue behind writes.
        return cls(
            request_pool=run.write_concurrency * 2,
            bucket_list_pool=bucket_list_pool,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class S3Settings:
    """Endpoint and credentials of the S3-compatible front end"""

    endpoint_url: str = "http://localhost:9000"
    access_key: str = "minioadmin"
    secret_key: str = "minioadmin"
    region: str = "us-east-1"
    verify_ssl: bool = False


@dataclass
class ClusterConfig:
    """Storage nodes and the command templates used to manage them"""

    nodes: Tuple[str, ...] = ()
    stats_port: int = 8098
    stats_timeout: float = 5.0
    command_timeout: float = 120.0
    raw_diagnostics: bool = False
    # Raw reads go to the internal manifest bucket of the S3 bucket.
    manifest_buckets: bool = True
    commands: Dict[str, Any] = field(default_factory=dict)


@dataclass
class BenchmarkConfig:
    """Everything a run needs, resolved from all configuration layers"""

    run: RunConfig
    s3: S3Settings = field(default_factory=S3Settings)
    cluster: ClusterConfig = field(default_factory=ClusterConfig)
    bucket_list_pool: int = DEFAULT_BUCKET_LIST_POOL

    @property
    def store_settings(self) -> StoreSettings:
        return StoreSettings.for_run(self.run, bucket_list_pool=self.bucket_list_pool)


# --------------------------------------------------------------------------------------
# Version profiles
# --------------------------------------------------------------------------------------

# Profile name -> S3Settings field -> environment variable overriding it.
VERSION_PROFILES: Dict[str, Dict[str, str]] = {
    "current": {},
    "previous": {
        "endpoint_url": "S3_PREVIOUS_ENDPOINT",
        "access_key": "S3_PREVIOUS_ACCESS_KEY",
        "secret_key": "S3_PREVIOUS_SECRET_KEY",
    },
}

# Keys accepted in the ``sibling_benchmark`` section -> RunConfig field.
RUN_OPTION_ALIASES = {
    "duration_sec": "duration_seconds",
    "leave_and_join": "churn_cycles",
}

# Environment variable -> (RunConfig field, parser)
RUN_ENV_VARS = {
    "SIBLING_WRITE_CONCURRENCY": ("write_concurrency", int),
    "SIBLING_DURATION_SEC": ("duration_seconds", float),
    "SIBLING_LEAVE_AND_JOIN": ("churn_cycles", int),
    "SIBLING_VERSION": ("version", str),
}


def split_node(node: str) -> Tuple[str, str]:
    """Split ``name@host`` into its parts; a bare host has an empty name."""
    name, sep, host = node.partition("@")
    if not sep:
        return "", node
    return name, host


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def normalize_run_options(options: Mapping[str, Any]) -> Dict[str, Any]:
    """Translate harness-style option names into RunConfig fields.

    Unknown keys are rejected so typos do not silently fall back to defaults.
    """
    known = {f.name for f in fields(RunConfig)}
    result: Dict[str, Any] = {}
    for raw_key, value in options.items():
        key = RUN_OPTION_ALIASES.get(raw_key, raw_key)
        if key not in known:
            raise ConfigError(f"unknown sibling_benchmark option: {raw_key}")
        if key == "seed_payload" and isinstance(value, str):
            value = value.encode()
        if key == "cleanup_on_failure":
            value = _parse_bool(value)
        result[key] = value
    return result


def load_yaml(path: Optional[str]) -> Dict[str, Any]:
    """Load the YAML configuration file; no path means an empty document."""
    if not path:
        return {}
    p = Path(path)
    if not p.exists():
        raise ConfigError(f"config file not found: {path}")
    with p.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigError("config file must contain a mapping at top level")
    return data


def _run_options_from_env(environ: Mapping[str, str]) -> Dict[str, Any]:
    options: Dict[str, Any] = {}
    for var, (name, parser) in RUN_ENV_VARS.items():
        raw = environ.get(var, "").strip()
        if not raw:
            continue
        try:
            options[name] = parser(raw)
        except ValueError:
            raise ConfigError(f"{var} has invalid value {raw!r}") from None
    return options


def _s3_settings(
    document: Mapping[str, Any], version: str, environ: Mapping[str, str]
) -> S3Settings:
    values = asdict(S3Settings())
    values.update(document.get("s3") or {})

    env_map = {
        "endpoint_url": "S3_ENDPOINT",
        "access_key": "S3_ACCESS_KEY",
        "secret_key": "S3_SECRET_KEY",
        "region": "S3_REGION",
        "verify_ssl": "S3_VERIFY_SSL",
    }
    for name, var in env_map.items():
        if environ.get(var):
            values[name] = environ[var]

    profile_doc = (document.get("profiles") or {}).get(version) or {}
    values.update(profile_doc.get("s3") or {})
    for name, var in VERSION_PROFILES[version].items():
        if environ.get(var):
            values[name] = environ[var]

    unknown = set(values) - {f.name for f in fields(S3Settings)}
    if unknown:
        raise ConfigError(f"unknown s3 options: {sorted(unknown)}")
    values["verify_ssl"] = _parse_bool(values["verify_ssl"])
    return S3Settings(**values)


def _cluster_config(
    document: Mapping[str, Any], version: str, environ: Mapping[str, str]
) -> ClusterConfig:
    section = dict(document.get("cluster") or {})
    profile_doc = (document.get("profiles") or {}).get(version) or {}
    profile_cluster = profile_doc.get("cluster") or {}

    commands = dict(section.pop("commands", None) or {})
    commands.update(profile_cluster.get("commands") or {})
    section.update({k: v for k, v in profile_cluster.items() if k != "commands"})
    for flag in ("raw_diagnostics", "manifest_buckets"):
        if flag in section:
            section[flag] = _parse_bool(section[flag])

    nodes = section.pop("nodes", None) or ()
    if environ.get("SIBLING_NODES"):
        nodes = [n.strip() for n in environ["SIBLING_NODES"].split(",") if n.strip()]
    if environ.get("SIBLING_STATS_PORT"):
        try:
            section["stats_port"] = int(environ["SIBLING_STATS_PORT"])
        except ValueError:
            raise ConfigError(
                f"SIBLING_STATS_PORT has invalid value {environ['SIBLING_STATS_PORT']!r}"
            ) from None

    try:
        return ClusterConfig(nodes=tuple(nodes), commands=commands, **section)
    except TypeError as e:
        raise ConfigError(f"invalid cluster section: {e}") from None


def load_config(
    path: Optional[str] = None,
    overrides: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> BenchmarkConfig:
    """Resolve a BenchmarkConfig from YAML, environment and overrides."""
    environ = os.environ if environ is None else environ
    document = load_yaml(path)

    run_options = normalize_run_options(document.get("sibling_benchmark") or {})
    run_options.update(_run_options_from_env(environ))
    run_options.update(
        normalize_run_options(
            {k: v for k, v in (overrides or {}).items() if v is not None}
        )
    )
    run = RunConfig(**run_options)

    return BenchmarkConfig(
        run=run,
        s3=_s3_settings(document, run.version, environ),
        cluster=_cluster_config(document, run.version, environ),
        bucket_list_pool=int(
            document.get("bucket_list_pool", DEFAULT_BUCKET_LIST_POOL)
        ),
    )
