"""
Door scanner state machine.

    scanning --decode--> loading --ok--> result --timer/dismiss/undo--> scanning
                                 \--fail--> error  --timer/dismiss-->      scanning

One machine serves every scanner variant; what a given screen offers
(undo, manual check-in from the list, reset delays) comes from
ScannerCapabilities.

Decodes arriving while the machine is not `scanning` are dropped: the camera
keeps firing frames of the same code while the first request is in flight.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from app.clients.api import ApiError, ConnectionFailure, EventApiClient
from app.clients.scheduling import DelayedCall, LoopScheduler, Scheduler, cancel_quietly
from app.core.config import get_settings
from app.core.logging import get_logger
from app.services.token_resolver import resolve_token

logger = get_logger(__name__)


class ScannerState(str, Enum):
    SCANNING = "scanning"
    LOADING = "loading"
    RESULT = "result"
    ERROR = "error"


class ScanErrorKind(str, Enum):
    INVALID_CODE = "invalid_code"
    NOT_FOUND = "not_found"
    REJECTED = "rejected"
    CONNECTION = "connection"


ERROR_MESSAGES = {
    ScanErrorKind.INVALID_CODE: "QR code is not valid for this event",
    ScanErrorKind.NOT_FOUND: "Guest not found",
    ScanErrorKind.CONNECTION: "Connection error. Please try again.",
}


@dataclass(frozen=True)
class ScannerCapabilities:
    undo: bool = True
    manual_checkin: bool = True
    result_reset_delay: float = 4.0
    error_reset_delay: float = 3.0


class CheckinScanner:
    def __init__(
        self,
        api: EventApiClient,
        event_id: Optional[int] = None,
        scheduler: Optional[Scheduler] = None,
        capabilities: ScannerCapabilities = ScannerCapabilities(),
        app_tag: Optional[str] = None,
    ):
        self.api = api
        self.event_id = event_id
        self.scheduler = scheduler or LoopScheduler()
        self.capabilities = capabilities
        self.app_tag = app_tag or get_settings().SCANNER_APP_TAG

        self.state = ScannerState.SCANNING
        self.result: Optional[dict] = None
        self.undone = False
        self.error_kind: Optional[ScanErrorKind] = None
        self.error_message: Optional[str] = None
        self.last_token: Optional[str] = None

        self._reset_call: Optional[DelayedCall] = None
        self._listeners: list[Callable[["CheckinScanner"], None]] = []

    def subscribe(self, listener: Callable[["CheckinScanner"], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self)

    def _transition(self, state: ScannerState) -> None:
        self.state = state
        self._notify()

    def _arm_reset(self, delay: float) -> None:
        cancel_quietly(self._reset_call)
        self._reset_call = self.scheduler.call_later(delay, self._auto_reset)

    def _auto_reset(self) -> None:
        self._reset_call = None
        self._back_to_scanning()

    def _back_to_scanning(self, undone: bool = False) -> None:
        self.result = None
        self.undone = undone
        self.error_kind = None
        self.error_message = None
        self._transition(ScannerState.SCANNING)

    def _fail(self, kind: ScanErrorKind, message: Optional[str] = None) -> None:
        self.result = None
        self.error_kind = kind
        self.error_message = message or ERROR_MESSAGES.get(kind, "Check-in failed")
        self._transition(ScannerState.ERROR)
        self._arm_reset(self.capabilities.error_reset_delay)

    async def on_decode(self, raw: str) -> bool:
        """Feed one decoded frame. False when the frame was dropped."""
        if self.state != ScannerState.SCANNING:
            return False

        resolution = resolve_token(raw, self.app_tag)
        if not resolution.ok:
            logger.info("scan_rejected_locally", reason=resolution.reason)
            self._fail(ScanErrorKind.INVALID_CODE)
            return True

        await self._checkin(resolution.token)
        return True

    async def manual_checkin(self, token: str) -> bool:
        """Check in a guest picked from the list instead of scanned."""
        if not self.capabilities.manual_checkin or self.state == ScannerState.LOADING:
            return False
        await self._checkin(token)
        return True

    async def _checkin(self, token: str) -> None:
        cancel_quietly(self._reset_call)
        self._reset_call = None
        self.last_token = token
        self.undone = False
        self._transition(ScannerState.LOADING)

        try:
            data = await self.api.checkin(token, self.event_id)
        except ApiError as e:
            if e.error_code == "NOT_FOUND":
                self._fail(ScanErrorKind.NOT_FOUND)
            else:
                self._fail(ScanErrorKind.REJECTED, e.message)
            return
        except ConnectionFailure:
            self._fail(ScanErrorKind.CONNECTION)
            return

        self.result = data
        self.error_kind = None
        self.error_message = None
        self._transition(ScannerState.RESULT)
        self._arm_reset(self.capabilities.result_reset_delay)

    async def undo(self) -> bool:
        """Revert the check-in currently on screen and resume scanning."""
        if not self.capabilities.undo or self.state != ScannerState.RESULT or self.last_token is None:
            return False

        cancel_quietly(self._reset_call)
        self._reset_call = None
        self._transition(ScannerState.LOADING)

        try:
            data = await self.api.undo_checkin(self.last_token, self.event_id)
        except ApiError as e:
            self._fail(ScanErrorKind.NOT_FOUND if e.error_code == "NOT_FOUND" else ScanErrorKind.REJECTED, e.message)
            return True
        except ConnectionFailure:
            self._fail(ScanErrorKind.CONNECTION)
            return True

        # Straight back to the camera; `undone` only drives the notice
        self._back_to_scanning(undone=bool(data.get("reverted")))
        return True

    def dismiss(self) -> bool:
        """Close the result or error card now instead of waiting for the timer."""
        if self.state not in (ScannerState.RESULT, ScannerState.ERROR):
            return False
        cancel_quietly(self._reset_call)
        self._reset_call = None
        self._back_to_scanning()
        return True

    def close(self) -> None:
        cancel_quietly(self._reset_call)
        self._reset_call = None
        self._listeners.clear()
