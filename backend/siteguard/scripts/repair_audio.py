from __future__ import annotations

import argparse
import json
import logging
import shutil
from pathlib import Path

from siteguard.core.config import settings
from siteguard.core.exceptions import ConfigurationError, ProbeError, RepairError
from siteguard.core.logging import setup_logging
from siteguard.services.video_repair import VideoIntegrityRepairer

logger = logging.getLogger(__name__)


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Fix audio streams that make the AI service reject a video (missing track, 0 channels, low sample rate)"
    )
    parser.add_argument("input", help="Path to the input video")
    parser.add_argument("output", nargs="?", help="Output path (default: <input>_preprocessed.mp4)")
    parser.add_argument("--force", action="store_true", help="Overwrite the output file if it exists")
    parser.add_argument("--reencode", action="store_true", help="Always rewrite as H.264/AAC, even if audio is fine")
    parser.add_argument("--check-only", action="store_true", help="Only report audio issues, write nothing")
    parser.add_argument("--log-level", default=settings.log_level)
    return parser.parse_args(argv)


def default_output(input_path: Path) -> Path:
    return input_path.with_name(f"{input_path.stem}_preprocessed.mp4")


def main(argv: list[str] | None = None) -> None:
    args = _parse_args(argv)
    setup_logging(args.log_level)

    input_path = Path(args.input)
    output_path = Path(args.output) if args.output else default_output(input_path)
    repairer = VideoIntegrityRepairer(ffmpeg_bin=settings.ffmpeg_bin, ffprobe_bin=settings.ffprobe_bin)

    if not input_path.is_file():
        print(json.dumps({"status": "failed", "error": f"Input file not found: {input_path}"}, indent=2))
        raise SystemExit(1)

    try:
        if args.check_only:
            probe = repairer.probe(input_path)
            summary = {"status": "checked", "input": str(input_path), "needs_repair": bool(probe.audio.issues)}
            summary.update(probe.to_dict())
            print(json.dumps(summary, indent=2))
            return

        if output_path.resolve() == input_path.resolve():
            print(json.dumps({"status": "failed", "error": "Output must differ from the input file"}, indent=2))
            raise SystemExit(1)
        if output_path.exists() and not args.force:
            print(json.dumps({"status": "failed", "error": f"Output exists (use --force): {output_path}"}, indent=2))
            raise SystemExit(1)

        outcome = repairer.ensure_compatible(input_path, output_path, force=args.reencode)
        if not outcome.repaired:
            shutil.copy2(input_path, output_path)
            logger.info("No audio issues found; copied %s unchanged", input_path.name)
    except (ConfigurationError, ProbeError, RepairError) as exc:
        print(json.dumps({"status": "failed", "error": str(exc)}, indent=2))
        raise SystemExit(1)

    print(
        json.dumps(
            {
                "status": "repaired" if outcome.repaired else "unchanged",
                "input": str(input_path),
                "output": str(output_path),
                "reencoded": outcome.reencoded,
                "issues_before": outcome.issues_before,
            },
            indent=2,
        )
    )


if __name__ == "__main__":
    main()
