"""
main.py — command-line entry point.

    python main.py photo.jpg [--comment "bought in 2010"] [--sync]
    python main.py --history

Architecture:
  asyncio event loop
    ├── AnalysisController  (stream or sync submission, one at a time)
    └── HistoryPager        (independent offset-paged read)
  Both share one AuthContext via SessionGuard → anonymous identity on first need.

Ctrl+C cancels the running submission silently.
"""
import argparse
import asyncio
import logging
import signal
import sys

import config
import style
from analysis_controller import AnalysisController, AnalysisState
from api_client import ApiClient
from history import HistoryPager
from identity import AuthContext, FirebaseIdentityProvider
from models import AnalysisRequest, Platform, detect_platform
from session_guard import SessionGuard

logging.basicConfig(
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    handlers=[logging.StreamHandler(sys.stderr)],
)
logging.getLogger("aiohttp.access").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


def _platform() -> Platform:
    if config.PLATFORM:
        try:
            return Platform(config.PLATFORM)
        except ValueError:
            logger.warning("Ignoring unknown PLATFORM=%r", config.PLATFORM)
    return detect_platform(config.CLIENT_USER_AGENT)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Appraise an item from a photo.")
    parser.add_argument("image", nargs="?", help="path to a JPEG/PNG/WebP photo")
    parser.add_argument("--comment", help="optional note sent with the photo")
    parser.add_argument("--sync", action="store_true", help="single request, no progress stream")
    parser.add_argument("--history", action="store_true", help="print the first page of past appraisals")
    return parser


async def run(args: argparse.Namespace) -> int:
    if not config.FIREBASE_API_KEY:
        logger.critical("FIREBASE_API_KEY is not set")
        return 2

    auth = AuthContext(FirebaseIdentityProvider(config.FIREBASE_API_KEY))
    client = ApiClient(auth)
    guard = SessionGuard(auth)

    if args.history:
        pager = HistoryPager(client, guard)
        await pager.refresh()
        if pager.error:
            print(style.error_line(pager.error))
            return 1
        print(style.history_page(pager.items, pager.has_more))
        if not args.image:
            return 0

    if not args.image:
        logger.error("No image given")
        return 2

    def _print_event(event) -> None:
        line = style.progress_line(event)
        if line:
            print(line, flush=True)

    controller = AnalysisController(client, guard, on_event=_print_event)
    request = AnalysisRequest.from_file(args.image, comment=args.comment, platform=_platform())

    print(style.LOADING_FOOTER, flush=True)
    task = controller.start(request, stream=not args.sync)

    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, controller.cancel)
    except (NotImplementedError, RuntimeError):
        # Windows doesn't support add_signal_handler for all signals
        pass

    await task

    if controller.state is AnalysisState.SUCCESS:
        print(style.result_card(controller.result))
        return 0
    if controller.state is AnalysisState.ERROR:
        print(style.error_line(controller.error_message))
        return 1
    logger.info("Cancelled.")
    return 130


def main() -> None:
    args = build_parser().parse_args()
    try:
        sys.exit(asyncio.run(run(args)))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
