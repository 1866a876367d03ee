"""
Command line interface

    s3repro run       reproduce the multipart upload against one emulator
    s3repro compare   reproduce against several image tags and report
"""

import logging
import sys
from pathlib import Path
from typing import Optional, Tuple

import click

from s3repro.compare import compare_images, generate_comparison_report, save_results
from s3repro.config import ReproConfig, load_config
from s3repro.errors import ConfigError
from s3repro.runner import RunOutcome, run_reproduction

EXIT_FAILED = 1
EXIT_SETUP_ERROR = 2


def setup_logging(verbose: int) -> None:
    level = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose > 1:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def resolve_config(config_path: Optional[str], **overrides) -> ReproConfig:
    try:
        return load_config(config_path, overrides=overrides)
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(EXIT_SETUP_ERROR)


def report_outcome(outcome: RunOutcome) -> None:
    if outcome.success:
        click.echo("Success!")
        click.echo(
            f"  {outcome.part_count} parts, {outcome.bytes_uploaded} bytes "
            f"in {outcome.duration:.2f}s"
        )
        return

    click.echo(f"Failed :-( {outcome.error_kind}: {outcome.error}")
    if outcome.abort_error:
        click.echo(f"  abort also failed: {outcome.abort_error}")


@click.group()
@click.option("--verbose", "-v", count=True, help="Increase log verbosity (-v, -vv)")
def main(verbose: int):
    """Reproduce multipart upload failures against an S3 emulator"""
    setup_logging(verbose)


@main.command()
@click.option("--config", "config_path", type=click.Path(), help="YAML config file")
@click.option("--image", "-i", help="Emulator image to start")
@click.option("--endpoint-url", "-e", help="Use a running S3 endpoint instead of a container")
@click.option("--bucket", "-b", help="Bucket to upload into")
@click.option("--key", "-k", help="Object key")
@click.option(
    "--file",
    "-f",
    "payload_file",
    type=click.File("rb"),
    help="Upload this file instead of a generated JSON payload",
)
@click.option("--size", "-s", type=int, help="Size of the generated payload in bytes")
@click.option("--chunk-size", type=int, help="Part size in bytes")
@click.option("--concurrency", "-j", type=int, help="Parts uploaded in parallel")
@click.option(
    "--keep-container/--no-keep-container",
    default=None,
    help="Leave the emulator running after the run",
)
def run(
    config_path: Optional[str],
    image: Optional[str],
    endpoint_url: Optional[str],
    bucket: Optional[str],
    key: Optional[str],
    payload_file,
    size: Optional[int],
    chunk_size: Optional[int],
    concurrency: Optional[int],
    keep_container: Optional[bool],
):
    """Upload a payload to the emulator and report success or failure"""
    config = resolve_config(
        config_path,
        image=image,
        endpoint_url=endpoint_url,
        bucket=bucket,
        key=key,
        payload_size=size,
        chunk_size=chunk_size,
        max_concurrency=concurrency,
        keep_container=keep_container,
    )

    target = config.endpoint_url or config.image
    click.echo(f"Uploading {config.bucket}/{config.key} to {target}")
    outcome = run_reproduction(config, source=payload_file)
    report_outcome(outcome)

    if not outcome.success:
        if outcome.error_kind == "ProvisioningError":
            sys.exit(EXIT_SETUP_ERROR)
        sys.exit(EXIT_FAILED)


@main.command()
@click.option("--config", "config_path", type=click.Path(), help="YAML config file")
@click.option(
    "--image",
    "-i",
    "images",
    multiple=True,
    default=["localstack/localstack:2.2.0", "localstack/localstack:latest"],
    help="Images to compare (can specify multiple)",
)
@click.option(
    "--output-dir",
    "-o",
    type=click.Path(),
    default="comparison-results",
    help="Output directory for results",
)
@click.option(
    "--report",
    "-r",
    type=click.Path(),
    default="compare-emulator-images.md",
    help="Output report file",
)
@click.option("--size", "-s", type=int, help="Size of the generated payload in bytes")
def compare(
    config_path: Optional[str],
    images: Tuple[str, ...],
    output_dir: str,
    report: str,
    size: Optional[int],
):
    """Run the reproduction against several images and write a report"""
    config = resolve_config(config_path, payload_size=size)

    click.echo("=" * 60)
    click.echo("Emulator Image Comparison")
    click.echo("=" * 60)
    click.echo(f"Images: {', '.join(images)}")
    click.echo("")

    output_path = Path(output_dir)
    output_path.mkdir(parents=True, exist_ok=True)

    outcomes = compare_images(images, config)
    for outcome in outcomes:
        click.echo(f"\n{outcome.image}:")
        report_outcome(outcome)

    save_results(outcomes, output_path / "results.json")
    report_path = Path(report)
    generate_comparison_report(outcomes, report_path)
    click.echo(f"\nReport saved to: {report_path}")

    if not all(o.success for o in outcomes):
        sys.exit(EXIT_FAILED)


if __name__ == "__main__":
    main()
