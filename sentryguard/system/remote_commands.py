"""Applies configuration deltas and commands echoed back by the webhook."""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Dict, Mapping, Optional, Tuple

from sentryguard.utils.config import HEARTBEAT_RANGE, SENSITIVITY_RANGE, ConfigStore
from sentryguard.utils.errors import IdentityMismatch

if TYPE_CHECKING:
    from sentryguard.system.alert_orchestrator import AlertOrchestrator

logger = logging.getLogger(__name__)


class RemoteCommand(str, enum.Enum):
    RELOAD = "RELOAD_PAGE"
    RESTART_CAPTURE = "RESTART_CAMERA"
    TRIGGER_EMERGENCY = "TRIGGER_ALARM"
    STOP_EMERGENCY = "STOP_ALARM"


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _in_range(bounds: Tuple[int, int]) -> Callable[[Any], bool]:
    lo, hi = bounds
    return lambda v: _is_int(v) and lo <= v <= hi


# wire key -> (config field, validator)
REMOTE_FIELDS: Dict[str, Tuple[str, Callable[[Any], bool]]] = {
    "sensitivity": ("sensitivity", _in_range(SENSITIVITY_RANGE)),
    "heartbeatIntervalMinutes": ("heartbeat_interval_minutes", _in_range(HEARTBEAT_RANGE)),
    "heartbeatInterval": ("heartbeat_interval_minutes", _in_range(HEARTBEAT_RANGE)),
    "webhookUrl": ("webhook_url", lambda v: isinstance(v, str)),
    "useExternalClassifier": ("use_external_classifier", lambda v: isinstance(v, bool)),
    "useGeminiAnalysis": ("use_external_classifier", lambda v: isinstance(v, bool)),
}


@dataclass
class AppliedUpdate:
    changes: Dict[str, Any] = field(default_factory=dict)
    command: Optional[RemoteCommand] = None


class RemoteCommandProcessor:
    """
    Identity gate, whitelisted config diff and command dispatch.

    A response carrying a ``locationName`` other than ours is dropped whole.
    ``on_reload`` is called by the host after ``reload_delay_s`` to restart
    the process; without one a reload only gets logged.
    """

    def __init__(
        self,
        config: ConfigStore,
        orchestrator: "AlertOrchestrator",
        on_reload: Optional[Callable[[], None]] = None,
    ) -> None:
        self.config = config
        self.orchestrator = orchestrator
        self.on_reload = on_reload

    def check_identity(self, response: Mapping[str, Any]) -> None:
        remote = response.get("locationName")
        local = self.config.current.location_name
        if remote is not None and remote != local:
            raise IdentityMismatch(str(remote), local)

    def diff(self, response: Mapping[str, Any]) -> Dict[str, Any]:
        current = self.config.as_dict()
        changes: Dict[str, Any] = {}
        for key, (name, valid) in REMOTE_FIELDS.items():
            if key not in response:
                continue
            value = response[key]
            if not valid(value):
                logger.warning("Ignoring remote %s=%r: wrong type or out of range", key, value)
                continue
            if value != current[name]:
                changes[name] = value
        return changes

    def apply(self, response: Any) -> Optional[AppliedUpdate]:
        if not isinstance(response, Mapping) or not response:
            return None
        try:
            self.check_identity(response)
        except IdentityMismatch as e:
            logger.warning("Rejected remote update: %s", e)
            return None

        update = AppliedUpdate(changes=self.diff(response))
        if update.changes:
            self.config.update(**update.changes)
            logger.info("Remote configuration applied: %s", ", ".join(sorted(update.changes)))

        raw = response.get("command")
        if raw:
            try:
                update.command = RemoteCommand(raw)
            except ValueError:
                logger.warning("Unknown remote command %r", raw)
            else:
                self.execute(update.command)
        return update

    def execute(self, command: RemoteCommand) -> None:
        logger.info("Remote command: %s", command.value)
        if command is RemoteCommand.RELOAD:
            self.orchestrator.request_reload(self.on_reload)
        elif command is RemoteCommand.RESTART_CAPTURE:
            self.orchestrator.restart_capture()
        elif command is RemoteCommand.TRIGGER_EMERGENCY:
            self.orchestrator.enter_emergency()
        elif command is RemoteCommand.STOP_EMERGENCY:
            self.orchestrator.exit_emergency()
