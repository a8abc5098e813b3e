#!/usr/bin/env python3
"""
Run the sibling convergence benchmark from the command line

    siblingbench run --config bench.yaml --write-concurrency 4 --duration 30
    siblingbench show-config --config bench.yaml --version previous
"""

import logging
import sys
from dataclasses import asdict
from typing import List, Optional

import click
import yaml

from siblingbench.benchmark import SiblingBenchmark
from siblingbench.cluster import CommandClusterController
from siblingbench.config import BenchmarkConfig, load_config
from siblingbench.errors import BenchmarkFailure, ConfigError
from siblingbench.replica import HttpRawReplicaAccessor, manifest_bucket
from siblingbench.s3_client import S3Client
from siblingbench.stats import HttpStatsCollector


def configure_logging(level: str, log_file: Optional[str]) -> None:
    """Log to stdout and, if requested, a file."""
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(threadName)s] %(name)s: %(message)s",
        handlers=handlers,
        force=True,
    )
    # botocore is chatty at DEBUG and drowns the per-tick stats.
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def build_benchmark(config: BenchmarkConfig) -> SiblingBenchmark:
    """Wire the real adapters for a resolved configuration."""
    cluster = config.cluster
    store_settings = config.store_settings
    replica = None
    if cluster.raw_diagnostics:
        replica = HttpRawReplicaAccessor(
            port=cluster.stats_port,
            timeout=cluster.stats_timeout,
            bucket_mapper=manifest_bucket if cluster.manifest_buckets else None,
        )
    return SiblingBenchmark(
        config.run,
        store=S3Client.from_settings(config.s3, store_settings),
        collector=HttpStatsCollector(
            port=cluster.stats_port, timeout=cluster.stats_timeout
        ),
        controller=CommandClusterController(
            cluster.commands, command_timeout=cluster.command_timeout
        ),
        nodes=cluster.nodes,
        replica=replica,
        store_settings=store_settings,
    )


def _resolve(config_path, overrides) -> BenchmarkConfig:
    try:
        return load_config(config_path, overrides=overrides)
    except ConfigError as e:
        raise click.UsageError(str(e))


@click.group()
def cli():
    """Sibling convergence benchmark for S3-compatible replicated stores"""


@cli.command()
@click.option("--config", "config_path", type=click.Path(), help="YAML config file")
@click.option("--write-concurrency", type=int, help="Number of concurrent writers")
@click.option("--duration", type=float, help="Workload duration in seconds")
@click.option("--churn-cycles", type=int, help="Leave/rejoin cycles after the workload")
@click.option(
    "--version",
    type=click.Choice(["current", "previous"]),
    help="Version profile of the target deployment",
)
@click.option(
    "--cleanup-on-failure",
    is_flag=True,
    default=None,
    help="Delete the test bucket even when the run fails",
)
@click.option("--log-level", default="INFO", help="Logging level")
@click.option("--log-file", type=click.Path(), help="Also log to this file")
def run(
    config_path,
    write_concurrency,
    duration,
    churn_cycles,
    version,
    cleanup_on_failure,
    log_level,
    log_file,
):
    """Run one benchmark and exit non-zero if it fails"""
    configure_logging(log_level, log_file)
    config = _resolve(
        config_path,
        {
            "write_concurrency": write_concurrency,
            "duration_seconds": duration,
            "churn_cycles": churn_cycles,
            "version": version,
            "cleanup_on_failure": cleanup_on_failure,
        },
    )

    if not config.cluster.nodes:
        raise click.UsageError("no cluster nodes configured (cluster.nodes or SIBLING_NODES)")
    if config.run.churn_cycles > 0 and len(config.cluster.nodes) < 2:
        raise click.UsageError("churn needs at least two cluster nodes")

    click.echo(f"\n{'='*60}")
    click.echo("Sibling benchmark")
    click.echo(f"{'='*60}")
    click.echo(f"Endpoint: {config.s3.endpoint_url}")
    click.echo(f"Nodes: {', '.join(config.cluster.nodes)}")
    click.echo(f"Write concurrency: {config.run.write_concurrency}")
    click.echo(f"Duration: {config.run.duration_seconds}s")
    click.echo(f"Churn cycles: {config.run.churn_cycles}")
    click.echo(f"Version: {config.run.version}")

    benchmark = build_benchmark(config)
    try:
        result = benchmark.run()
    except BenchmarkFailure as e:
        click.echo(f"\nFAILED: {e}")
        sys.exit(1)

    click.echo(f"\nPASSED in {result.elapsed:.1f}s")
    click.echo(
        f"  Max siblings: {result.max_siblings_ever} "
        f"(bound {result.bound}, {len(result.observations)} samples)"
    )


@cli.command("show-config")
@click.option("--config", "config_path", type=click.Path(), help="YAML config file")
@click.option("--version", type=click.Choice(["current", "previous"]))
def show_config(config_path, version):
    """Print the resolved configuration"""
    config = _resolve(config_path, {"version": version})
    document = asdict(config)
    document["run"]["seed_payload"] = config.run.seed_payload.decode(errors="replace")
    document["cluster"]["nodes"] = list(config.cluster.nodes)
    document["s3"]["secret_key"] = "****"
    document["store_settings"] = config.store_settings.to_dict()
    click.echo(yaml.safe_dump(document, sort_keys=False))


if __name__ == "__main__":
    cli()
