"""
Async HTTP client for the check-in API, used by the scanner, the
registration flow and the roster synchronizer.

Every non-2xx answer becomes ApiError carrying the server's errorCode;
every transport failure becomes ConnectionFailure. Nothing is retried
automatically: retries are a user action.
"""

from typing import Any, Optional

import httpx

from app.core.logging import get_logger

logger = get_logger(__name__)


class ApiError(Exception):
    def __init__(self, status: int, error_code: Optional[str], message: str, payload: Optional[dict] = None):
        self.status = status
        self.error_code = error_code
        self.message = message
        self.payload = payload or {}
        super().__init__(f"{status} {error_code}: {message}")


class ConnectionFailure(Exception):
    pass


class EventApiClient:
    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        access_token: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
        prefix: str = "/api/v1",
    ):
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._owns_client = client is None
        self._prefix = prefix
        self.access_token = access_token

    async def __aenter__(self) -> "EventApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(self, method: str, path: str, json: Optional[dict] = None) -> Any:
        headers = {}
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"

        try:
            response = await self._client.request(method, self._prefix + path, json=json, headers=headers)
        except httpx.TransportError as e:
            logger.warning("api_connection_failed", method=method, path=path, error=str(e))
            raise ConnectionFailure(str(e)) from e

        try:
            body = response.json() if response.content else {}
        except ValueError:
            body = {"error": response.text}

        if response.is_success:
            return body

        if not isinstance(body, dict):
            body = {"error": str(body)}
        message = body.get("error") or body.get("detail") or f"HTTP {response.status_code}"
        if not isinstance(message, str):
            message = str(message)
        raise ApiError(response.status_code, body.get("errorCode"), message, body)

    # Operators

    async def login(self, email: str, password: str) -> str:
        data = await self._request("POST", "/auth/login", {"email": email, "password": password})
        self.access_token = data["access_token"]
        return self.access_token

    async def checkin(self, token: str, event_id: Optional[int] = None, action: str = "checkin") -> dict:
        body = {"token": token, "action": action}
        if event_id is not None:
            body["eventId"] = event_id
        return await self._request("POST", "/checkin", body)

    async def undo_checkin(self, token: str, event_id: Optional[int] = None) -> dict:
        body = {"token": token}
        if event_id is not None:
            body["eventId"] = event_id
        return await self._request("POST", "/checkin/undo", body)

    async def set_arrival(self, event_id: int, registration_id: int, arrived: bool) -> dict:
        return await self._request(
            "POST",
            f"/events/{event_id}/guests/{registration_id}/arrival",
            {"arrived": arrived},
        )

    async def add_walk_in(self, event_id: int, slot_id: int, name: Optional[str] = None, count: int = 1) -> dict:
        return await self._request(
            "POST",
            f"/events/{event_id}/walk-ins",
            {"slotId": slot_id, "name": name, "count": count},
        )

    async def fetch_roster(self, event_id: int) -> dict:
        return await self._request("GET", f"/events/{event_id}/roster")

    # Guests

    async def register(
        self,
        event_id: int,
        slot_id: int,
        name: str,
        phone: str,
        count: int = 1,
        avatar_url: Optional[str] = None,
        avatar_type: str = "none",
        capacity: Optional[int] = None,
    ) -> dict:
        return await self._request(
            "POST",
            f"/events/{event_id}/registrations",
            {
                "slotId": slot_id,
                "name": name,
                "phone": phone,
                "count": count,
                "avatarUrl": avatar_url,
                "avatarType": avatar_type,
                "capacity": capacity,
            },
        )

    async def get_registration(self, token: str) -> dict:
        return await self._request("GET", f"/registrations/{token}")

    async def cancel_registration(self, token: str) -> dict:
        return await self._request("POST", "/registrations/cancel", {"token": token})

    async def send_otp(self, registration_id: int, phone: str, locale: str = "he") -> dict:
        return await self._request(
            "POST",
            "/otp",
            {"action": "send", "registrationId": registration_id, "phone": phone, "locale": locale},
        )

    async def verify_otp(self, registration_id: int, phone: str, code: str) -> dict:
        return await self._request(
            "POST",
            "/otp",
            {"action": "verify", "registrationId": registration_id, "phone": phone, "code": code},
        )
