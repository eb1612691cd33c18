"""
Client for the Rental Offers API and the session state built on it.

`RentalApiClient` is a thin async wrapper over the HTTP endpoints.
`AuthSession` owns the stored token and the current user, and moves through
UNAUTHENTICATED -> CHECKING -> AUTHENTICATED | ERROR. Anything that needs to
react to login or logout subscribes to it.
"""
import asyncio
import logging
from datetime import date
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import httpx

import config
from currency import CurrencyPreference
from errors import (
    Conflict,
    InvalidCredentials,
    NotAuthorized,
    NotFound,
    RentalError,
    Unauthenticated,
    UnsupportedCurrency,
    UpstreamUnavailable,
    ValidationError,
)
from offers import validate_offer

logger = logging.getLogger(__name__)

TOKEN_KEY = "token"

UnauthorizedCallback = Callable[[], Union[None, Awaitable[None]]]


class RentalApiClient:
    """HTTP access to the API; raises the same error types the server uses."""

    def __init__(self, base_url: str, on_unauthorized: Optional[UnauthorizedCallback] = None,
                 timeout: float = 30.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.on_unauthorized = on_unauthorized
        self._http = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=transport)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self):
        await self._http.aclose()

    def set_token(self, token: str) -> None:
        self._http.headers["Authorization"] = f"Bearer {token}"

    def clear_token(self) -> None:
        self._http.headers.pop("Authorization", None)

    @property
    def has_token(self) -> bool:
        return "Authorization" in self._http.headers

    async def _request(self, method: str, endpoint: str, json_data: Optional[Dict] = None,
                       params: Optional[Dict] = None) -> Any:
        sent_token = self.has_token
        try:
            response = await self._http.request(method, endpoint, json=json_data, params=params)
        except httpx.RequestError as e:
            raise UpstreamUnavailable(f"Network error: {e}")

        if response.is_success:
            try:
                return response.json()
            except ValueError:
                raise UpstreamUnavailable(f"Unreadable response from {endpoint}")

        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}
        detail = data.get("detail")
        if not isinstance(detail, str):
            detail = None

        status = response.status_code
        if status == 401:
            if sent_token and self.on_unauthorized is not None:
                result = self.on_unauthorized()
                if asyncio.iscoroutine(result):
                    await result
            if data.get("error") == "InvalidCredentials":
                raise InvalidCredentials(detail)
            raise Unauthenticated(detail)
        if status == 400 and data.get("error") == "UnsupportedCurrency":
            raise UnsupportedCurrency(data.get("code") or "")
        if status == 403:
            raise NotAuthorized(detail)
        if status == 404:
            raise NotFound(detail)
        if status == 409:
            raise Conflict(detail)
        if status == 422:
            raise ValidationError(detail or "Request validation failed")
        if status >= 500:
            raise UpstreamUnavailable(detail)
        raise RentalError(detail or f"API request failed: {status}")

    # Auth
    async def login(self, username: str, password: str) -> Dict[str, Any]:
        return await self._request("POST", "/login", {"username": username, "password": password})

    async def register(self, username: str, email: str, password: str, role: str = "tenant") -> Dict[str, Any]:
        return await self._request(
            "POST", "/register", {"username": username, "email": email, "password": password, "role": role}
        )

    async def me(self) -> Dict[str, Any]:
        return await self._request("GET", "/me")

    async def refresh(self) -> Dict[str, Any]:
        return await self._request("POST", "/refresh")

    # Apartments
    async def list_apartments(self, **filters) -> Dict[str, Any]:
        params = {k: v for k, v in filters.items() if v is not None}
        return await self._request("GET", "/apartments", params=params)

    async def get_apartment(self, apartment_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/apartments/{apartment_id}")

    async def create_apartment(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("POST", "/apartments", data)

    async def set_apartment_status(self, apartment_id: str, status: str) -> Dict[str, Any]:
        return await self._request("PATCH", f"/apartments/{apartment_id}/status", {"status": status})

    async def apartment_price(self, apartment_id: str, currency: str = "EUR") -> Dict[str, Any]:
        return await self._request("GET", f"/apartments/{apartment_id}/price", params={"currency": currency})

    # Offers
    async def submit_offer(self, apartment_id: str, offer_type: str, move_in_date: date,
                           bid_amount: Optional[float] = None, duration: int = 12,
                           message: Optional[str] = None) -> Dict[str, Any]:
        payload = {
            "apartmentId": apartment_id,
            "offerType": offer_type,
            "bidAmount": bid_amount,
            "moveInDate": move_in_date.isoformat(),
            "duration": duration,
            "message": message,
        }
        return await self._request("POST", "/offers", payload)

    async def apartment_offers(self, apartment_id: str) -> List[Dict[str, Any]]:
        return await self._request("GET", f"/offers/apartment/{apartment_id}")

    async def my_offers(self, apartment_id: Optional[str] = None) -> List[Dict[str, Any]]:
        params = {"apartment_id": apartment_id} if apartment_id else None
        return await self._request("GET", "/offers/user", params=params)

    async def get_offer(self, offer_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/offers/{offer_id}")

    async def update_offer_status(self, offer_id: str, status: str) -> Dict[str, Any]:
        return await self._request("PUT", f"/offers/{offer_id}", {"status": status})


class SessionState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    CHECKING = "checking"
    AUTHENTICATED = "authenticated"
    ERROR = "error"


Listener = Callable[[SessionState, Optional[Dict[str, Any]]], None]


class AuthSession:
    def __init__(self, base_url: str, storage, bootstrap_timeout: Optional[float] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.storage = storage
        self.bootstrap_timeout = config.AUTH_BOOTSTRAP_TIMEOUT if bootstrap_timeout is None else bootstrap_timeout
        self.api = RentalApiClient(base_url, on_unauthorized=self._on_unauthorized, transport=transport)
        self.currency = CurrencyPreference(storage)
        self.user: Optional[Dict[str, Any]] = None
        self.error: Optional[str] = None
        self._listeners: List[Listener] = []

        token = storage.get(TOKEN_KEY)
        if token:
            self.api.set_token(token)
            self.state = SessionState.CHECKING
        else:
            self.state = SessionState.UNAUTHENTICATED

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.api.close()

    @property
    def is_authenticated(self) -> bool:
        return self.state is SessionState.AUTHENTICATED

    @property
    def role(self) -> Optional[str]:
        return self.user["role"] if self.user else None

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _transition(self, state: SessionState, user: Optional[Dict[str, Any]] = None,
                    error: Optional[str] = None) -> None:
        self.state = state
        self.user = user
        self.error = error
        logger.debug("Session state -> %s", state.value)
        for listener in list(self._listeners):
            try:
                listener(state, user)
            except Exception:
                logger.exception("Session listener failed")

    def _store_token(self, token: str) -> None:
        self.storage.set(TOKEN_KEY, token)
        self.api.set_token(token)

    def _drop_token(self) -> None:
        self.storage.remove(TOKEN_KEY)
        self.api.clear_token()

    async def bootstrap(self) -> SessionState:
        """Verify a stored token, giving up after `bootstrap_timeout` seconds.

        A timed-out check is left to finish in the background; its result is ignored.
        """
        if not self.storage.get(TOKEN_KEY):
            self._transition(SessionState.UNAUTHENTICATED)
            return self.state

        self._transition(SessionState.CHECKING)
        check = asyncio.ensure_future(self.api.me())
        check.add_done_callback(_discard_result)
        try:
            user = await asyncio.wait_for(asyncio.shield(check), self.bootstrap_timeout)
        except asyncio.TimeoutError:
            logger.warning("Session check timed out after %ss", self.bootstrap_timeout)
            self._transition(SessionState.ERROR, error="Session check timed out")
        except (Unauthenticated, NotAuthorized):
            logger.info("Stored token rejected, clearing it")
            self._drop_token()
            self._transition(SessionState.UNAUTHENTICATED)
        except RentalError as e:
            logger.warning("Session check failed: %s", e.detail)
            self._transition(SessionState.ERROR, error=e.detail)
        except Exception as e:
            logger.exception("Session check failed unexpectedly")
            self._transition(SessionState.ERROR, error=str(e) or type(e).__name__)
        else:
            self._transition(SessionState.AUTHENTICATED, user)
        return self.state

    async def login(self, username: str, password: str) -> Dict[str, Any]:
        data = await self.api.login(username, password)
        self._store_token(data["token"])
        user = {"id": data["userId"], "username": data["username"], "email": data["email"], "role": data["role"]}
        self._transition(SessionState.AUTHENTICATED, user)
        logger.info("Logged in as %s", user["username"])
        return user

    async def register(self, username: str, email: str, password: str, role: str = "tenant") -> Dict[str, Any]:
        data = await self.api.register(username, email, password, role)
        self._store_token(data["token"])
        self._transition(SessionState.AUTHENTICATED, data["user"])
        return data["user"]

    def logout(self) -> None:
        self._drop_token()
        self._transition(SessionState.UNAUTHENTICATED)

    def _on_unauthorized(self) -> None:
        # The bootstrap check handles its own 401
        if self.state is SessionState.AUTHENTICATED:
            logger.info("Server rejected the session token, logging out")
            self.logout()

    async def submit_offer(self, apartment: Dict[str, Any], offer_type: str, move_in_date: date,
                           bid_amount: Optional[float] = None, duration: int = 12,
                           message: Optional[str] = None) -> Dict[str, Any]:
        """Validate locally against the listing, then submit. The server checks again."""
        if not self.is_authenticated:
            raise Unauthenticated("Authentication required")
        amount = validate_offer(apartment["rent"], offer_type, bid_amount, move_in_date, duration)
        return await self.api.submit_offer(apartment["id"], offer_type, move_in_date, amount, duration, message)


def _discard_result(task: asyncio.Future) -> None:
    if not task.cancelled():
        task.exception()
