"""
Compare emulator images

Runs the reproduction against several emulator image tags and generates a
markdown report showing which tags accept the multipart upload flow.
"""

import dataclasses
import json
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

from s3repro.config import ReproConfig
from s3repro.runner import RunOutcome, run_reproduction

logger = logging.getLogger(__name__)

_VERSION_RE = re.compile(r"(\d+)(?:\.(\d+))?(?:\.(\d+))?")


def image_tag(image: str) -> str:
    """Return the tag of an image reference, 'latest' when none is given"""
    name = image.rsplit("/", 1)[-1]
    if "@" in name:
        return name.split("@", 1)[1]
    if ":" in name:
        return name.split(":", 1)[1]
    return "latest"


def _parse_version_triplet(v: str) -> Tuple[int, int, int]:
    """
    Convert a tag like '2.2.0' or '3.0-arm64' into a comparable (2, 2, 0)

    Missing parts are treated as zero. Non-numeric suffixes are ignored.
    """
    m = _VERSION_RE.search(v)
    if not m:
        return (0, 0, 0)
    return tuple(int(p) if p is not None else 0 for p in m.groups())


def version_sort_key(image: str) -> Tuple[int, Tuple[int, int, int], str]:
    """
    Order images by tag version

    Tags without a version (e.g. 'latest', 'stable') and digest references
    sort after all versioned tags.
    """
    tag = image_tag(image)
    if "@" in image.rsplit("/", 1)[-1] or not _VERSION_RE.search(tag):
        return (1, (0, 0, 0), tag)
    return (0, _parse_version_triplet(tag), tag)


def compare_images(
    images: Sequence[str],
    base_config: ReproConfig,
    runner: Optional[Callable[[ReproConfig], RunOutcome]] = None,
) -> List[RunOutcome]:
    """Run the reproduction once per image, in version order"""
    runner = runner or run_reproduction
    outcomes = []
    for image in sorted(images, key=version_sort_key):
        config = dataclasses.replace(base_config, image=image, endpoint_url=None)
        logger.info("Running reproduction against %s", image)
        outcomes.append(runner(config))
    return outcomes


def create_ascii_bar(value: float, max_value: float, width: int = 40) -> str:
    """Create an ASCII progress bar"""
    filled = int((value / max_value) * width) if max_value > 0 else 0
    filled = min(filled, width)
    return "█" * filled + "░" * (width - filled)


def first_failing_image(outcomes: Sequence[RunOutcome]) -> Optional[RunOutcome]:
    """Return the lowest versioned image that fails after one that passed"""
    seen_success = False
    for outcome in outcomes:
        if outcome.success:
            seen_success = True
        elif seen_success:
            return outcome
    return None


def generate_comparison_report(
    outcomes: Sequence[RunOutcome],
    output_file: Optional[Path] = None,
) -> str:
    """Generate a markdown report; written to output_file when given"""
    lines = []

    lines.append("# Emulator Multipart Upload Comparison")
    lines.append("")
    lines.append(f"**Generated:** {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    lines.append("")
    lines.append("---")
    lines.append("")

    lines.append("## Results")
    lines.append("")
    lines.append("| Image | Result | Parts | Bytes | Duration | Error |")
    lines.append("|-------|--------|-------|-------|----------|-------|")
    for o in outcomes:
        status = "✅ PASSED" if o.success else "❌ FAILED"
        error = ""
        if not o.success:
            error = f"{o.error_kind}: {o.error}"
            if o.abort_error:
                error += f" (abort: {o.abort_error})"
            error = error.replace("|", "\\|")[:120]
        lines.append(
            f"| {o.image} | {status} | {o.part_count} | {o.bytes_uploaded} | "
            f"{o.duration:.2f}s | {error} |"
        )
    lines.append("")

    lines.append("## Duration")
    lines.append("")
    lines.append("```")
    max_duration = max((o.duration for o in outcomes), default=0)
    width = max((len(o.image) for o in outcomes), default=12)
    for o in outcomes:
        bar = create_ascii_bar(o.duration, max_duration, 50)
        lines.append(f"{o.image:{width}} |{bar}| {o.duration:.1f}s")
    lines.append("```")
    lines.append("")

    lines.append("## Conclusion")
    lines.append("")
    passed = [o for o in outcomes if o.success]
    failed = [o for o in outcomes if not o.success]
    if not failed:
        lines.append("*All images accepted the multipart upload.*")
    elif not passed:
        lines.append("*No image accepted the multipart upload.*")
    else:
        regression = first_failing_image(outcomes)
        lines.append(f"**Passing:** {', '.join(o.image for o in passed)}")
        lines.append("")
        lines.append(f"**Failing:** {', '.join(o.image for o in failed)}")
        if regression is not None:
            lines.append("")
            lines.append(f"**First failing image after a passing one:** {regression.image}")
    lines.append("")

    report = "\n".join(lines)
    if output_file is not None:
        with open(output_file, "w", encoding="utf-8") as f:
            f.write(report)
    return report


def save_results(outcomes: Sequence[RunOutcome], results_file: Path) -> None:
    with open(results_file, "w") as f:
        json.dump([o.to_dict() for o in outcomes], f, indent=2)
