"""
Messaging gateway (INFORU WhatsApp / SMS API): one-time passcodes and the
link to a guest's QR page.

A gateway without credentials reports is_configured == False; the OTP
service turns that into SERVICE_NOT_CONFIGURED and registration degrades to
"unverified" instead of failing.
"""

import base64
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import httpx

from app.core.config import Settings, get_settings
from app.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class SendResult:
    success: bool
    method: str
    message_id: Optional[str] = None
    error: Optional[str] = None


class MessagingGateway(ABC):
    @property
    @abstractmethod
    def is_configured(self) -> bool:
        pass

    @abstractmethod
    async def send_otp(self, phone: str, code: str, locale: str = "he") -> SendResult:
        """Deliver `code` to the E.164 `phone`. Must not raise on delivery failure."""
        pass

    @abstractmethod
    async def send_access_link(
        self,
        phone: str,
        link: str,
        guest_name: str = "",
        event_title: str = "",
        locale: str = "he",
    ) -> SendResult:
        """Deliver the guest's QR page link. Same no-raise contract as send_otp."""
        pass


class InforuGateway(MessagingGateway):
    """WhatsApp template delivery with optional SMS fallback."""

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.settings.INFORU_API_USER and self.settings.INFORU_API_TOKEN)

    def _auth_header(self) -> str:
        token = self.settings.INFORU_API_TOKEN
        if token.startswith("Basic "):
            return token
        raw = f"{self.settings.INFORU_API_USER}:{token}".encode("utf-8")
        return "Basic " + base64.b64encode(raw).decode("ascii")

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.settings.INFORU_API_BASE_URL,
            headers={"Authorization": self._auth_header()},
            timeout=self.settings.MESSAGING_TIMEOUT_SECONDS,
            transport=self._transport,
        )

    async def send_otp(self, phone: str, code: str, locale: str = "he") -> SendResult:
        method = self.settings.MESSAGING_METHOD
        if method in ("whatsapp", "both"):
            result = await self._send_whatsapp(phone, code, locale)
            if result.success or method == "whatsapp":
                return result
            logger.info("otp_whatsapp_failed_fallback_sms", phone=phone, error=result.error)
        return await self._send_sms(phone, code, locale)

    async def send_access_link(
        self,
        phone: str,
        link: str,
        guest_name: str = "",
        event_title: str = "",
        locale: str = "he",
    ) -> SendResult:
        method = self.settings.MESSAGING_METHOD
        if method in ("whatsapp", "both"):
            body = {
                "Data": {
                    "TemplateId": self.settings.INFORU_WHATSAPP_TEMPLATE_ACCESS_LINK,
                    "TemplateParameters": [
                        {"Name": "[#1#]", "Type": "Text", "Value": guest_name},
                        {"Name": "[#2#]", "Type": "Text", "Value": event_title},
                    ],
                    # URL buttons travel outside TemplateParameters
                    "Buttons": [{"Type": "URL", "FieldName": self.settings.INFORU_ACCESS_LINK_BUTTON, "Value": link}],
                    "Recipients": [{"Phone": phone.lstrip("+")}],
                }
            }
            result = await self._post("/api/v2/WhatsApp/SendWhatsApp", body, "whatsapp")
            if result.success or method == "whatsapp":
                return result
            logger.info("access_link_whatsapp_failed_fallback_sms", phone=phone, error=result.error)

        if locale == "he":
            text = f"קוד הכניסה שלך ל{event_title}: {link}"
        else:
            text = f"Your entry code for {event_title}: {link}"
        return await self._sms(phone, text)

    async def _send_whatsapp(self, phone: str, code: str, locale: str) -> SendResult:
        template_id = (
            self.settings.INFORU_WHATSAPP_TEMPLATE_HE
            if locale == "he"
            else self.settings.INFORU_WHATSAPP_TEMPLATE_EN
        )
        body = {
            "Data": {
                "TemplateId": template_id,
                "TemplateParameters": [{"Name": "[#1#]", "Type": "OTP", "Value": code}],
                "Recipients": [{"Phone": phone.lstrip("+")}],
            }
        }
        return await self._post("/api/v2/WhatsApp/SendWhatsApp", body, "whatsapp")

    async def _send_sms(self, phone: str, code: str, locale: str) -> SendResult:
        text = f"קוד האימות שלך: {code}" if locale == "he" else f"Your verification code: {code}"
        return await self._sms(phone, text)

    async def _sms(self, phone: str, text: str) -> SendResult:
        body = {
            "Data": {
                "Message": text,
                "Recipients": [{"Phone": phone.lstrip("+")}],
                "Settings": {"Sender": self.settings.INFORU_SENDER_ID},
            }
        }
        return await self._post("/api/v2/SMS/SendSms", body, "sms")

    async def _post(self, path: str, body: dict, method: str) -> SendResult:
        try:
            async with self._client() as client:
                response = await client.post(path, json=body)
            data = response.json() if response.content else {}
        except (httpx.HTTPError, ValueError) as e:
            logger.error("messaging_request_failed", method=method, error=str(e))
            return SendResult(success=False, method=method, error=str(e))

        # INFORU answers StatusId == 1 on success
        if response.is_success and data.get("StatusId") == 1:
            return SendResult(success=True, method=method, message_id=str(data.get("RequestId") or ""))

        error = data.get("StatusDescription") or f"HTTP {response.status_code}"
        logger.error("messaging_rejected", method=method, status_code=response.status_code, error=error)
        return SendResult(success=False, method=method, error=error)


def get_messaging_gateway() -> MessagingGateway:
    """FastAPI dependency; overridden in tests."""
    return InforuGateway(get_settings())
