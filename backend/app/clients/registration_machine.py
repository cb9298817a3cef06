"""
Guest registration flow with phone verification.

    form -> submitting -> sending_otp -> otp_input -> verifying -> success
                 \              \              \            \-> error
                  \-> error      \-> error      \-> form (back: cancels the
                                                     pending registration)
    open() -> already_registered  when this device remembers a live
                                  registration for the slot

Local validation (name, phone, party size, code format) never reaches the
network. An unconfigured messaging gateway is not an error: the guest keeps
an unverified registration and lands on success with verified=False.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from app.clients.api import ApiError, ConnectionFailure, EventApiClient
from app.clients.scheduling import DelayedCall, LoopScheduler, Scheduler, cancel_quietly
from app.core.config import get_settings
from app.core.logging import get_logger
from app.utils.phone import normalize_phone

logger = get_logger(__name__)
settings = get_settings()

MAX_PARTY_SIZE = settings.MAX_PARTY_SIZE
RESEND_COOLDOWN_SECONDS = float(settings.OTP_RESEND_COOLDOWN_SECONDS)

_CODE = re.compile(r"^\d{4}$")


class FlowState(str, Enum):
    FORM = "form"
    SUBMITTING = "submitting"
    SENDING_OTP = "sending_otp"
    OTP_INPUT = "otp_input"
    VERIFYING = "verifying"
    SUCCESS = "success"
    ERROR = "error"
    ALREADY_REGISTERED = "already_registered"


@dataclass
class RegistrationForm:
    name: str
    phone: str
    count: int = 1
    avatar_url: Optional[str] = None
    avatar_type: str = "none"


class RegistrationMemory:
    """Which slot this device registered into, and with which access token."""

    def __init__(self):
        self._tokens: dict[int, str] = {}

    def get(self, slot_id: int) -> Optional[str]:
        return self._tokens.get(slot_id)

    def remember(self, slot_id: int, token: str) -> None:
        self._tokens[slot_id] = token

    def forget(self, slot_id: int) -> None:
        self._tokens.pop(slot_id, None)


def validate_form(form: RegistrationForm, country_code: str = "972") -> dict[str, str]:
    errors = {}
    if not (form.name or "").strip():
        errors["name"] = "Name is required"
    if normalize_phone(form.phone, country_code) is None:
        errors["phone"] = "Invalid mobile number"
    if not isinstance(form.count, int) or not 1 <= form.count <= MAX_PARTY_SIZE:
        errors["count"] = f"Party size must be between 1 and {MAX_PARTY_SIZE}"
    return errors


class RegistrationFlow:
    def __init__(
        self,
        api: EventApiClient,
        event_id: int,
        slot_id: int,
        scheduler: Optional[Scheduler] = None,
        memory: Optional[RegistrationMemory] = None,
        locale: str = "he",
        resend_cooldown: float = RESEND_COOLDOWN_SECONDS,
        country_code: str = "972",
        capacity: Optional[int] = None,
    ):
        self.api = api
        self.event_id = event_id
        self.slot_id = slot_id
        self.scheduler = scheduler or LoopScheduler()
        self.memory = memory or RegistrationMemory()
        self.locale = locale
        self.resend_cooldown = resend_cooldown
        self.country_code = country_code
        # Slot capacity as shown when the form was loaded
        self.capacity = capacity

        self.state = FlowState.FORM
        self.field_errors: dict[str, str] = {}
        self.error_code: Optional[str] = None
        self.error_message: Optional[str] = None
        self.attempts_remaining: Optional[int] = None
        self.available_slots: Optional[int] = None

        self.registration_id: Optional[int] = None
        self.access_token: Optional[str] = None
        self.phone: Optional[str] = None
        self.verified: Optional[bool] = None
        self.registration: Optional[dict] = None

        self.can_resend = False
        self.resend_available_at: Optional[float] = None
        self.retry_after: Optional[int] = None
        self._cooldown_call: Optional[DelayedCall] = None
        self._error_return = FlowState.FORM
        self._listeners: list[Callable[["RegistrationFlow"], None]] = []

    def subscribe(self, listener: Callable[["RegistrationFlow"], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self)

    def _transition(self, state: FlowState) -> None:
        self.state = state
        self._notify()

    def _clear_errors(self) -> None:
        self.field_errors = {}
        self.error_code = None
        self.error_message = None
        self.available_slots = None
        self.retry_after = None

    def _fail(self, code: Optional[str], message: str, return_to: FlowState) -> None:
        self.error_code = code
        self.error_message = message
        self._error_return = return_to
        self._transition(FlowState.ERROR)

    def _forget_registration(self) -> None:
        self.memory.forget(self.slot_id)
        self.registration_id = None
        self.access_token = None
        self.phone = None
        self.verified = None
        self.registration = None
        self.attempts_remaining = None

    # Resend cooldown

    def _start_cooldown(self, delay: Optional[float] = None) -> None:
        delay = self.resend_cooldown if delay is None else delay
        cancel_quietly(self._cooldown_call)
        self.can_resend = False
        self.resend_available_at = self.scheduler.now() + delay
        self._cooldown_call = self.scheduler.call_later(delay, self._cooldown_elapsed)

    def _cooldown_elapsed(self) -> None:
        self._cooldown_call = None
        self.can_resend = True
        self._notify()

    def _stop_cooldown(self) -> None:
        cancel_quietly(self._cooldown_call)
        self._cooldown_call = None
        self.can_resend = False
        self.resend_available_at = None

    # Operations

    async def open(self) -> FlowState:
        """Enter the flow, resuming a registration this device already holds."""
        token = self.memory.get(self.slot_id)
        if token:
            try:
                registration = await self.api.get_registration(token)
            except ApiError:
                self.memory.forget(self.slot_id)
            except ConnectionFailure:
                logger.warning("registration_lookup_unreachable", slot_id=self.slot_id)
            else:
                if registration.get("status") != "cancelled":
                    self.registration = registration
                    self.registration_id = registration.get("registrationId")
                    self.access_token = registration.get("accessToken", token)
                    self.verified = registration.get("verificationStatus") == "verified"
                    self._transition(FlowState.ALREADY_REGISTERED)
                    return self.state
                self.memory.forget(self.slot_id)

        self._transition(FlowState.FORM)
        return self.state

    async def submit(self, form: RegistrationForm) -> bool:
        if self.state != FlowState.FORM:
            return False

        self._clear_errors()
        errors = validate_form(form, self.country_code)
        if errors:
            self.field_errors = errors
            self._notify()
            return False

        phone = normalize_phone(form.phone, self.country_code)
        self._transition(FlowState.SUBMITTING)
        try:
            created = await self.api.register(
                self.event_id,
                self.slot_id,
                form.name.strip(),
                phone,
                form.count,
                form.avatar_url,
                form.avatar_type,
                capacity=self.capacity,
            )
        except ApiError as e:
            self.available_slots = e.payload.get("availableSlots")
            self._fail(e.error_code, e.message, FlowState.FORM)
            return False
        except ConnectionFailure:
            self._fail("CONNECTION", "Connection error. Please try again.", FlowState.FORM)
            return False

        self.registration_id = created["registrationId"]
        self.access_token = created["accessToken"]
        self.phone = phone
        self.verified = False
        self.memory.remember(self.slot_id, self.access_token)

        await self._send_code()
        return True

    async def _send_code(self) -> None:
        self._transition(FlowState.SENDING_OTP)
        try:
            await self.api.send_otp(self.registration_id, self.phone, self.locale)
        except ApiError as e:
            if e.error_code == "SERVICE_NOT_CONFIGURED":
                logger.info("otp_unavailable_degraded", registration_id=self.registration_id)
                self.verified = False
                self._stop_cooldown()
                self._transition(FlowState.SUCCESS)
                return
            if e.error_code == "ALREADY_VERIFIED":
                self.verified = True
                self._stop_cooldown()
                self._transition(FlowState.SUCCESS)
                return
            if e.error_code == "RATE_LIMITED":
                # Stay on the code screen; resend unlocks when the window does
                self.retry_after = e.payload.get("retryAfter")
                self._start_cooldown(max(self.resend_cooldown, float(self.retry_after or 0)))
                self.error_code = e.error_code
                self.error_message = e.message
                self._transition(FlowState.OTP_INPUT)
                return
            self._start_cooldown()
            self._fail(e.error_code, e.message, FlowState.OTP_INPUT)
            return
        except ConnectionFailure:
            self.can_resend = True
            self._fail("CONNECTION", "Connection error. Please try again.", FlowState.OTP_INPUT)
            return

        self.attempts_remaining = None
        self._start_cooldown()
        self._transition(FlowState.OTP_INPUT)

    async def verify(self, code: str) -> bool:
        if self.state != FlowState.OTP_INPUT:
            return False

        self._clear_errors()
        code = (code or "").strip()
        if not _CODE.match(code):
            self.field_errors = {"code": "Enter the 4-digit code"}
            self._notify()
            return False

        self._transition(FlowState.VERIFYING)
        try:
            data = await self.api.verify_otp(self.registration_id, self.phone, code)
        except ApiError as e:
            if e.error_code in ("INVALID_CODE", "EXPIRED", "BLOCKED"):
                if e.error_code == "BLOCKED":
                    self.attempts_remaining = 0
                else:
                    self.attempts_remaining = e.payload.get("attemptsRemaining", self.attempts_remaining)
                self.error_code = e.error_code
                self.error_message = e.message
                self._transition(FlowState.OTP_INPUT)
                return False
            self._fail(e.error_code, e.message, FlowState.OTP_INPUT)
            return False
        except ConnectionFailure:
            self._fail("CONNECTION", "Connection error. Please try again.", FlowState.OTP_INPUT)
            return False

        self.access_token = data.get("qrToken", self.access_token)
        self.verified = True
        self.memory.remember(self.slot_id, self.access_token)
        self._stop_cooldown()
        self._transition(FlowState.SUCCESS)
        return True

    async def resend(self) -> bool:
        if self.state != FlowState.OTP_INPUT or not self.can_resend:
            return False
        self._clear_errors()
        await self._send_code()
        return True

    def dismiss(self) -> bool:
        """Leave the error card, back to where the failed action started."""
        if self.state != FlowState.ERROR:
            return False
        target = self._error_return
        self.error_code = None
        self.error_message = None
        self._transition(target)
        return True

    async def back_to_form(self) -> bool:
        """Abandon verification: the unverified registration is cancelled."""
        if self.state not in (FlowState.OTP_INPUT, FlowState.ERROR) or self.access_token is None:
            return False

        self._stop_cooldown()
        try:
            await self.api.cancel_registration(self.access_token)
        except ApiError as e:
            if e.error_code not in ("ALREADY_CANCELLED", "NOT_FOUND"):
                self._fail(e.error_code, e.message, FlowState.OTP_INPUT)
                return False
        except ConnectionFailure:
            self._fail("CONNECTION", "Connection error. Please try again.", FlowState.OTP_INPUT)
            return False

        self._forget_registration()
        self._clear_errors()
        self._transition(FlowState.FORM)
        return True

    async def cancel(self) -> bool:
        """Unregister from the slot (from already_registered or success)."""
        if self.state not in (FlowState.ALREADY_REGISTERED, FlowState.SUCCESS) or self.access_token is None:
            return False

        try:
            await self.api.cancel_registration(self.access_token)
        except ApiError as e:
            if e.error_code != "ALREADY_CANCELLED":
                self._fail(e.error_code, e.message, self.state)
                return False
        except ConnectionFailure:
            self._fail("CONNECTION", "Connection error. Please try again.", self.state)
            return False

        logger.info("registration_cancelled_by_guest", slot_id=self.slot_id)
        self._forget_registration()
        self._stop_cooldown()
        self._transition(FlowState.FORM)
        return True

    def close(self) -> None:
        self._stop_cooldown()
        self._listeners.clear()
