"""
CLI entry point for the agricultural insight pipeline.

Usage:
    python scripts/run_pipeline.py --lat 21.1458 --lon 79.0882
    python scripts/run_pipeline.py --region 440001 --farmer-id farmer_001
    python scripts/run_pipeline.py --region Punjab --image field1.jpg --image field2.jpg
    python scripts/run_pipeline.py --lat 21.1458 --lon 79.0882 --phone +919812345678 --language mr
"""

import argparse
import json
import logging
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT / "src"))

from agripipe.config import load_settings
from agripipe.models import Coordinates, PipelineQuery
from agripipe.orchestrator import build_default_orchestrator


def main():
    parser = argparse.ArgumentParser(
        description="Run the agricultural insight pipeline for one location",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/run_pipeline.py --lat 21.1458 --lon 79.0882
  python scripts/run_pipeline.py --region 440001
  python scripts/run_pipeline.py --region "Nagpur" --image field.jpg --no-notify
        """,
    )
    parser.add_argument("--lat", type=float, default=None, help="Latitude")
    parser.add_argument("--lon", type=float, default=None, help="Longitude")
    parser.add_argument(
        "--region", default=None,
        help="Region name, Indian PIN code (e.g., 440001) or lat,lon",
    )
    parser.add_argument("--farmer-id", default=None, help="Farmer identifier")
    parser.add_argument(
        "--image", action="append", default=[],
        help="Field photo to analyze (repeatable)",
    )
    parser.add_argument("--phone", default=None, help="Phone number for the alert")
    parser.add_argument(
        "--language", default="hi", choices=["en", "hi", "mr"],
        help="Alert language (default: hi)",
    )
    parser.add_argument(
        "--channel", action="append", default=None, choices=["sms", "voice"],
        help="Notification channel (repeatable, default: sms)",
    )
    parser.add_argument(
        "--no-notify", action="store_true",
        help="Do not send an alert even if --phone is given",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Enable verbose logging",
    )

    args = parser.parse_args()

    # Configure logging
    level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    if (args.lat is None) != (args.lon is None):
        print("ERROR: --lat and --lon must be given together", file=sys.stderr)
        sys.exit(1)

    images = []
    for path in args.image:
        try:
            images.append(Path(path).read_bytes())
        except OSError as e:
            print(f"ERROR: Cannot read image {path}: {e}", file=sys.stderr)
            sys.exit(1)

    query = PipelineQuery(
        coordinates=Coordinates(args.lat, args.lon) if args.lat is not None else None,
        region=args.region,
        farmer_id=args.farmer_id,
        images=images,
        phone_number=args.phone,
        language=args.language,
        notify=False if args.no_notify else None,
        channels=args.channel or ["sms"],
    )

    orchestrator = build_default_orchestrator(load_settings())
    try:
        result = orchestrator.run(query)
    finally:
        orchestrator.shutdown()

    print(json.dumps(result.to_dict(), indent=2, ensure_ascii=False, default=str))
    if not result.success:
        sys.exit(2)


if __name__ == "__main__":
    main()
