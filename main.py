"""
main.py: command-line entry point.

Gathers image paths per side, runs one analysis and prints the report as JSON.

  python main.py pair packaging.jpg delivery.jpg
  python main.py angles --packaging p1.jpg p2.jpg --delivery d1.jpg d2.jpg
  python main.py pair a.jpg b.jpg --mode local

Exit code 0 on success, 1 with a readable message on stderr otherwise.
"""
import argparse
import asyncio
import json
import logging
import sys

import config
from analyzers.manager import MODES, analyse_angles, analyse_pair
from report import ImageAsset
from vision.base import ImageReadError, VisionError

logging.basicConfig(
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    handlers=[logging.StreamHandler(sys.stderr)],
)
logging.getLogger("aiohttp.access").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="delivery-validator",
        description="Compare packaging-time and delivery-time product photos.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    pair = sub.add_parser("pair", help="compare one packaging image with one delivery image")
    pair.add_argument("packaging")
    pair.add_argument("delivery")

    angles = sub.add_parser("angles", help="compare several views of the product per side")
    angles.add_argument("--packaging", nargs="+", required=True)
    angles.add_argument("--delivery", nargs="+", required=True)

    for p in (pair, angles):
        p.add_argument("--mode", choices=MODES, default=None,
                       help="auto (default: remote if GEMINI_API_KEY is set), remote or local")
    return parser


def gather_images(paths: list[str], side: str) -> list[ImageAsset]:
    if len(paths) > config.MAX_IMAGES_PER_SIDE:
        raise ValueError(
            f"Too many {side} images: {len(paths)} (maximum {config.MAX_IMAGES_PER_SIDE})"
        )
    return [ImageAsset.from_path(p) for p in paths]


async def run(args: argparse.Namespace) -> dict:
    if args.command == "pair":
        report = await analyse_pair(
            ImageAsset.from_path(args.packaging),
            ImageAsset.from_path(args.delivery),
            mode=args.mode,
        )
    else:
        report = await analyse_angles(
            gather_images(args.packaging, "packaging"),
            gather_images(args.delivery, "delivery"),
            mode=args.mode,
        )
    return report.to_dict()


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        result = asyncio.run(run(args))
    except (VisionError, ImageReadError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130
    print(json.dumps(result, indent=2, ensure_ascii=False))
    return 0


if __name__ == "__main__":
    sys.exit(main())
