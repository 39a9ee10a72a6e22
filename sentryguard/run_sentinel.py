from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import sys
from pathlib import Path
from typing import Optional, Union

from sentryguard.audio.capture_engine import AudioCaptureEngine
from sentryguard.audio.mic_stream import AudioSource, SoundDeviceSource
from sentryguard.simulation.event_player import SCENARIOS, EventPlayer
from sentryguard.system.alert_orchestrator import AlertOrchestrator
from sentryguard.system.classifier import GeminiClassifier
from sentryguard.system.collaborators import ImageSource, NullImageSource, StillImageSource
from sentryguard.system.report_dispatcher import ReportDispatcher
from sentryguard.utils.config import ConfigStore, load_config
from sentryguard.utils.constants import AUDIO
from sentryguard.utils.errors import AcquisitionError
from sentryguard.utils.log import setup_logging

logger = logging.getLogger("sentryguard")


def _device(value: Optional[str]) -> Optional[Union[int, str]]:
    if value is None:
        return None
    return int(value) if value.isdigit() else value


def build_source(args: argparse.Namespace) -> AudioSource:
    if args.simulate:
        return EventPlayer(SCENARIOS[args.simulate], sample_rate=args.sample_rate).source()
    return SoundDeviceSource(device=_device(args.device), sample_rate=args.sample_rate)


async def run(args: argparse.Namespace) -> int:
    config = ConfigStore(load_config(args.config))
    image_source: ImageSource = StillImageSource(args.image) if args.image else NullImageSource()
    dispatcher = ReportDispatcher(config)
    engine = AudioCaptureEngine()
    done = asyncio.Event()
    reload_requested = False

    def on_reload() -> None:
        nonlocal reload_requested
        reload_requested = True
        done.set()

    orchestrator = AlertOrchestrator(
        engine,
        image_source,
        dispatcher,
        config,
        classifier=GeminiClassifier(),
        on_reload=on_reload,
    )

    if args.test_webhook:
        ok = await orchestrator.send_test_report()
        await orchestrator.join()
        return 0 if ok else 1

    try:
        engine.initialize(build_source(args))
    except AcquisitionError as e:
        logger.error("Cannot start: %s", e)
        return 1

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, done.set)
        except NotImplementedError:
            pass

    orchestrator.start()
    logger.info("Sentinel active at %r. Ctrl+C to stop", config.current.location_name or "(unnamed)")
    try:
        await done.wait()
    finally:
        orchestrator.stop()
        await orchestrator.join()

    if reload_requested:
        logger.warning("Reloading process")
        os.execv(sys.executable, [sys.executable, "-m", "sentryguard.run_sentinel", *sys.argv[1:]])
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Acoustic sentinel: detect alarms and distress cries, report to a webhook.")
    parser.add_argument("--config", type=Path, default=Path("config.json"), help="JSON configuration file")
    parser.add_argument("--image", type=Path, default=None, help="JPEG kept fresh by an external camera process")
    parser.add_argument("--device", default=None, help="Input device index or name")
    parser.add_argument("--sample-rate", type=int, default=AUDIO.sample_rate, help="Capture sample rate in Hz")
    parser.add_argument("--simulate", choices=sorted(SCENARIOS), default=None, help="Use a synthetic scenario instead of the microphone")
    parser.add_argument("--test-webhook", action="store_true", help="Send one TEST report and exit")
    parser.add_argument("--debug", action="store_true", help="Verbose logging")
    parser.add_argument("--log-file", type=Path, default=None, help="Also log to this file")
    args = parser.parse_args()

    setup_logging(log_file=args.log_file, debug=args.debug)
    try:
        sys.exit(asyncio.run(run(args)))
    except ValueError as e:
        logger.error("%s", e)
        sys.exit(1)


if __name__ == "__main__":
    main()
