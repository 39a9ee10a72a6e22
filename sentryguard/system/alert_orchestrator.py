"""Alert escalation state machine connecting capture, scoring, verification and reporting."""
from __future__ import annotations

import asyncio
import enum
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Coroutine, Deque, List, NamedTuple, Optional, Set

from sentryguard.audio.capture_engine import AudioCaptureEngine, AudioSnapshot
from sentryguard.audio.spectrum import SILENT, DetectionMetrics
from sentryguard.system.classifier import Classifier
from sentryguard.system.collaborators import ImageSource
from sentryguard.system.detection_scorer import AlertCategory, DetectionEvent, DetectionScorer
from sentryguard.system.remote_commands import RemoteCommandProcessor
from sentryguard.system.report_dispatcher import ReportDispatcher, ReportPayload
from sentryguard.utils.config import ConfigStore
from sentryguard.utils.constants import CYCLE, DETECTION, CycleConstants, DetectionConstants
from sentryguard.utils.errors import (
    AcquisitionError,
    CaptureError,
    ClassifierError,
    ClassifierRateLimited,
    DeliveryFailed,
)

logger = logging.getLogger(__name__)

EMERGENCY_ALERT = "EMERGENCY"
HEARTBEAT_ALERT = "HEARTBEAT"
TEST_ALERT = "TEST"
LOCAL_DESCRIPTION = "Local detection triggered"


class AgentState(str, enum.Enum):
    IDLE = "IDLE"
    MONITORING = "MONITORING"
    ANALYZING = "ANALYZING"
    CYCLE_ACTIVE = "CYCLE_ACTIVE"
    UPLOADING = "UPLOADING"
    COOLDOWN = "COOLDOWN"
    EMERGENCY = "EMERGENCY"


class StateChange(NamedTuple):
    state: AgentState
    step: Optional[int] = None


@dataclass
class AlertSession:
    category: AlertCategory
    step: int
    description: str
    started_at: float


class CancellationToken:
    """Cooperative cancellation flag whose sleeps wake early on cancel.

    Cancelling a token cancels every child created from it.
    """

    def __init__(self, parent: Optional["CancellationToken"] = None) -> None:
        self._event = asyncio.Event()
        self._children: List[CancellationToken] = []
        self._parent = parent
        if parent is not None:
            if parent.active:
                parent._children.append(self)
            else:
                self._event.set()

    @property
    def active(self) -> bool:
        return not self._event.is_set()

    def child(self) -> "CancellationToken":
        return CancellationToken(self)

    def cancel(self) -> None:
        if self._event.is_set():
            return
        self._event.set()
        children, self._children = self._children, []
        for c in children:
            c.cancel()
        if self._parent is not None and self in self._parent._children:
            self._parent._children.remove(self)

    async def sleep(self, delay: float) -> bool:
        """Wait *delay* seconds. Returns False if cancelled before or during the wait."""
        if not self.active:
            return False
        try:
            await asyncio.wait_for(self._event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return True
        return False


class AlertOrchestrator:
    """
    Owns the agent state and every background task of a session.

    Must be driven from a running asyncio loop. All continuations re-check
    their CancellationToken after each suspension point before touching
    state, uploading or rescheduling; ``stop()`` cancels the session token
    so that stale continuations fall through without side effects.
    """

    def __init__(
        self,
        engine: AudioCaptureEngine,
        image_source: ImageSource,
        dispatcher: ReportDispatcher,
        config: ConfigStore,
        classifier: Optional[Classifier] = None,
        scorer: Optional[DetectionScorer] = None,
        params: CycleConstants = CYCLE,
        detection: DetectionConstants = DETECTION,
        on_reload: Optional[Callable[[], None]] = None,
    ) -> None:
        self.engine = engine
        self.image_source = image_source
        self.dispatcher = dispatcher
        self.config = config
        self.classifier = classifier
        self.scorer = scorer or DetectionScorer(detection)
        self.params = params
        self.detection = detection
        self.commands = RemoteCommandProcessor(config, self, on_reload=on_reload)

        self.state = AgentState.IDLE
        self.step: Optional[int] = None
        self.history: Deque[StateChange] = deque(maxlen=params.history_size)
        self.alert: Optional[AlertSession] = None
        self.last_metrics: DetectionMetrics = SILENT

        self._session: Optional[CancellationToken] = None
        self._cycle: Optional[CancellationToken] = None
        self._emergency: Optional[CancellationToken] = None
        self._tasks: Set[asyncio.Task] = set()
        self._loops: List[asyncio.Task] = []
        self._last_heartbeat = 0.0
        self._restarting = False
        self._reload_pending = False

    # -- session ---------------------------------------------------------

    @property
    def active(self) -> bool:
        return self._session is not None and self._session.active

    def start(self) -> None:
        if self.state is not AgentState.IDLE:
            logger.warning("start() ignored: already %s", self.state.value)
            return
        if not self.engine.is_running:
            raise AcquisitionError("audio capture must be initialised before start()")
        session = CancellationToken()
        self._session = session
        self.scorer.reset()
        self._last_heartbeat = time.monotonic()
        self._transition(AgentState.MONITORING)
        self._loops = [
            self._spawn(self._tick_loop(session)),
            self._spawn(self._heartbeat_loop(session)),
        ]

    def stop(self) -> None:
        if self._session is not None:
            self._session.cancel()
        for task in self._loops:
            task.cancel()
        self._loops = []
        self._cycle = None
        self._emergency = None
        self.alert = None
        self.engine.shutdown()
        self.scorer.reset()
        self.last_metrics = SILENT
        if self.state is not AgentState.IDLE:
            self._transition(AgentState.IDLE)

    async def join(self) -> None:
        """Wait for every outstanding background task to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # -- plumbing --------------------------------------------------------

    def _transition(self, state: AgentState, step: Optional[int] = None) -> None:
        self.state = state
        self.step = step
        self.history.append(StateChange(state, step))
        if step is None:
            logger.info("State -> %s", state.value)
        else:
            logger.info("State -> %s(%d)", state.value, step)

    def _spawn(self, coro: Coroutine) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background task %s crashed", task.get_coro(), exc_info=exc)

    def _capture_audio(self) -> Optional[AudioSnapshot]:
        try:
            return self.engine.snapshot()
        except CaptureError as e:
            logger.warning("Audio snapshot failed: %s", e)
            return None

    async def _capture_image(self) -> Optional[bytes]:
        try:
            return await asyncio.to_thread(self.image_source.capture)
        except CaptureError as e:
            logger.warning("Image capture failed: %s", e)
            return None

    async def _report(self, payload: ReportPayload, token: CancellationToken) -> bool:
        if not self.dispatcher.configured:
            logger.debug("No webhook configured; %s report not sent", payload.alert_type)
            return False
        try:
            response = await self.dispatcher.deliver(payload, token=token)
        except DeliveryFailed as e:
            if e.cancelled:
                logger.debug("Report %s step %d abandoned: session ended", payload.alert_type, payload.cycle_step)
                return False
            logger.error("Report %s step %d not delivered: %s", payload.alert_type, payload.cycle_step, e)
            return False
        if not token.active:
            logger.debug("Session ended during upload; response discarded")
            return True
        self.commands.apply(response)
        return True

    def _finish_cycle(self, cycle: CancellationToken) -> None:
        if not cycle.active:
            return
        cycle.cancel()
        if self._cycle is cycle:
            self._cycle = None
        self.alert = None
        self._transition(AgentState.MONITORING)

    # -- detection -------------------------------------------------------

    async def _tick_loop(self, session: CancellationToken) -> None:
        while session.active:
            if self.state is AgentState.MONITORING:
                self._tick()
            if not await session.sleep(self.detection.tick_interval_s):
                return

    def _tick(self) -> None:
        metrics = self.engine.current_metrics()
        self.last_metrics = metrics
        event = self.scorer.tick(metrics, self.config.current.sensitivity)
        logger.debug(
            "tick volume=%.1f tonality=%.2f fire=%.0f scream=%.0f",
            metrics.volume,
            metrics.tonality,
            self.scorer.fire_score,
            self.scorer.scream_score,
        )
        if event is not None:
            self.on_detection(event)

    def on_detection(self, event: DetectionEvent) -> None:
        if not self.active or self.state is not AgentState.MONITORING:
            return
        logger.warning("Possible %s detected, verifying", event.category.value)
        self._transition(AgentState.ANALYZING)
        cycle = self._session.child()
        self._cycle = cycle
        self._spawn(self._verify(event, cycle))

    async def _verify(self, event: DetectionEvent, cycle: CancellationToken) -> None:
        audio = self._capture_audio()
        image = await self._capture_image()
        if not cycle.active:
            return

        cfg = self.config.current
        category, description = event.category, LOCAL_DESCRIPTION
        if cfg.use_external_classifier and self.classifier is not None:
            try:
                verdict = await asyncio.to_thread(self.classifier.analyze, image, audio, cfg.location_name)
            except ClassifierRateLimited as e:
                logger.warning("%s; cooling down for %.0fs", e, self.params.rate_limit_cooldown_s)
                if not cycle.active:
                    return
                self._transition(AgentState.COOLDOWN)
                if await cycle.sleep(self.params.rate_limit_cooldown_s):
                    self._finish_cycle(cycle)
                return
            except ClassifierError as e:
                logger.warning("Verification aborted: %s", e)
                self._finish_cycle(cycle)
                return
            if not cycle.active:
                return
            if verdict.is_false_alarm:
                logger.info("Classifier rejected the alert: %s", verdict.description)
                if await cycle.sleep(self.params.false_alarm_delay_s):
                    self._finish_cycle(cycle)
                return
            category, description = verdict.category, verdict.description
        elif cfg.use_external_classifier:
            logger.warning("External classifier enabled but not available; using local category")

        self.alert = AlertSession(category, 1, description, time.time())
        await self._run_cycle(cycle, self.alert, image, audio)

    # -- escalation ------------------------------------------------------

    async def _run_cycle(
        self,
        cycle: CancellationToken,
        alert: AlertSession,
        image: Optional[bytes],
        audio: Optional[AudioSnapshot],
    ) -> None:
        total = self.params.step_count
        for step in range(1, total + 1):
            alert.step = step
            self._transition(AgentState.CYCLE_ACTIVE, step)
            if step > 1:
                logger.info("Cycle report %d/%d", step, total)
                if not await cycle.sleep(self.params.dwell_s):
                    return
                audio = self._capture_audio()
                image = await self._capture_image()
                if not cycle.active:
                    return

            self._transition(AgentState.UPLOADING, step)
            payload = ReportPayload(
                image=image,
                audio=audio.wav if audio is not None else None,
                alert_type=alert.category.value,
                location_name=self.config.current.location_name,
                description=alert.description,
                cycle_step=step,
            )
            await self._report(payload, cycle)
            if not cycle.active:
                return

            if step < total:
                self._transition(AgentState.COOLDOWN)
                if not await cycle.sleep(self.params.cycle_interval_s):
                    return

        self.scorer.reset()
        self._finish_cycle(cycle)

    # -- emergency -------------------------------------------------------

    def enter_emergency(self) -> None:
        if not self.active:
            logger.warning("Emergency requested while idle; ignored")
            return
        if self.state is AgentState.EMERGENCY:
            return
        if self._cycle is not None:
            self._cycle.cancel()
            self._cycle = None
        self.alert = None
        self.scorer.reset()
        self._transition(AgentState.EMERGENCY)
        token = self._session.child()
        self._emergency = token
        self._spawn(self._emergency_loop(token))

    def exit_emergency(self) -> None:
        if self.state is not AgentState.EMERGENCY:
            return
        if self._emergency is not None:
            self._emergency.cancel()
            self._emergency = None
        self._transition(AgentState.MONITORING)

    async def _emergency_loop(self, token: CancellationToken) -> None:
        sent = 0
        while token.active:
            sent += 1
            audio = self._capture_audio()
            image = await self._capture_image()
            if not token.active:
                return
            payload = ReportPayload(
                image=image,
                audio=audio.wav if audio is not None else None,
                alert_type=EMERGENCY_ALERT,
                location_name=self.config.current.location_name,
                description="Remote emergency report",
                cycle_step=sent,
            )
            await self._report(payload, token)
            if not await token.sleep(self.params.emergency_interval_s):
                return

    # -- heartbeat and test reports --------------------------------------

    async def _heartbeat_loop(self, session: CancellationToken) -> None:
        while await session.sleep(self.params.heartbeat_poll_s):
            minutes = self.config.current.heartbeat_interval_minutes
            if minutes <= 0 or self.state is not AgentState.MONITORING:
                continue
            now = time.monotonic()
            if now - self._last_heartbeat >= minutes * 60:
                self._last_heartbeat = now
                await self.send_heartbeat(session)

    async def send_heartbeat(self, token: CancellationToken) -> bool:
        image = await self._capture_image()
        if not token.active:
            logger.debug("Heartbeat skipped: session ended")
            return False
        if image is None:
            logger.debug("Heartbeat skipped: no image")
            return False
        payload = ReportPayload(
            image=image,
            audio=None,
            alert_type=HEARTBEAT_ALERT,
            location_name=self.config.current.location_name,
            description="Scheduled snapshot",
            cycle_step=0,
        )
        return await self._report(payload, token)

    async def send_test_report(self) -> bool:
        token = self._session if self.active else CancellationToken()
        audio = self._capture_audio() if self.engine.is_running else None
        payload = ReportPayload(
            image=await self._capture_image(),
            audio=audio.wav if audio is not None else None,
            alert_type=TEST_ALERT,
            location_name=self.config.current.location_name,
            description="Test report",
            cycle_step=0,
        )
        return await self._report(payload, token)

    # -- remote actions --------------------------------------------------

    def restart_capture(self) -> None:
        if not self.active or self._restarting:
            return
        self._restarting = True
        self.engine.shutdown()
        self._spawn(self._restart_capture(self._session))

    async def _restart_capture(self, session: CancellationToken) -> None:
        try:
            if not await session.sleep(self.params.restart_capture_delay_s):
                return
            try:
                self.engine.restart()
            except AcquisitionError as e:
                logger.error("Capture restart failed: %s", e)
            else:
                logger.info("Capture pipeline restarted")
        finally:
            self._restarting = False

    def request_reload(self, callback: Optional[Callable[[], None]]) -> None:
        if self._reload_pending or not self.active:
            return
        if callback is None:
            logger.warning("Reload requested but this host has no reload handler")
            return
        self._reload_pending = True
        self._spawn(self._reload(callback, self._session))

    async def _reload(self, callback: Callable[[], None], session: CancellationToken) -> None:
        if not await session.sleep(self.params.reload_delay_s):
            logger.info("Pending reload dropped: session ended")
            self._reload_pending = False
            return
        callback()
