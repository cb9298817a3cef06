from app.models.user import User
from app.models.event import Event
from app.models.slot import Slot
from app.models.registration import Registration
from app.models.otp_challenge import OtpChallenge
from app.models.rate_limit import RateLimitWindow

__all__ = ["User", "Event", "Slot", "Registration", "OtpChallenge", "RateLimitWindow"]
