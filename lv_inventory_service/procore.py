import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import httpx

from . import config
from .exceptions import AuthenticationFailed, UpstreamUnavailable
from .schemas import ProcoreSession, PurchaseOrder, PurchaseOrderLineItem, Rfi

logger = logging.getLogger(__name__)


class ProcoreClient:
    """Procore REST API client.

    Holds only the app credentials. Tokens live in a ProcoreSession passed to
    each call; a refreshed token is written back into that session and the
    caller decides when to persist it.
    """

    def __init__(
        self,
        client_id: str = config.PROCORE_CLIENT_ID,
        client_secret: str = config.PROCORE_CLIENT_SECRET,
        redirect_uri: str = config.PROCORE_REDIRECT_URI,
        base_url: str = config.PROCORE_API_BASE_URL,
        timeout: float = config.PROCORE_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, timeout=self.timeout)

    def authorization_url(self) -> str:
        """URL the user is sent to for logging in with Procore"""
        query = urlencode({
            "client_id": self.client_id,
            "response_type": "code",
            "redirect_uri": self.redirect_uri,
        })
        return f"{self.base_url}/oauth/authorize?{query}"

    async def _token_request(self, session: ProcoreSession, payload: Dict[str, Any]) -> str:
        try:
            async with self._client() as client:
                response = await client.post(f"{self.base_url}/oauth/token", json=payload)
        except httpx.RequestError as e:
            logger.error(f"Error communicating with Procore token endpoint: {e}")
            raise AuthenticationFailed(f"Token request failed: {e}") from e

        if response.status_code != 200:
            logger.error(f"Token request ({payload['grant_type']}) failed: Status {response.status_code}")
            if payload["grant_type"] == "refresh_token":
                # the refresh token is dead; drop it so it is not retried
                session.clear()
            raise AuthenticationFailed(f"Token request failed: {response.status_code}")

        data = response.json()
        if not data.get("access_token"):
            raise AuthenticationFailed("Token response did not contain an access token")

        session.set_tokens(data, config.DEFAULT_TOKEN_EXPIRES_IN)
        return session.access_token

    async def exchange_code(self, session: ProcoreSession, auth_code: str) -> str:
        """Exchange an OAuth callback code for tokens"""
        logger.info("Exchanging authorization code for Procore tokens")
        return await self._token_request(session, {
            "grant_type": "authorization_code",
            "code": auth_code,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "redirect_uri": self.redirect_uri,
        })

    async def refresh_access_token(self, session: ProcoreSession) -> str:
        logger.info("Refreshing Procore access token")
        return await self._token_request(session, {
            "grant_type": "refresh_token",
            "refresh_token": session.refresh_token,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
        })

    async def authenticate(self, session: ProcoreSession) -> str:
        """Return a valid access token, refreshing it when expired"""
        if session.is_valid():
            return session.access_token

        if session.refresh_token:
            return await self.refresh_access_token(session)

        raise AuthenticationFailed("Not logged in to Procore")

    async def request(self, session: ProcoreSession, endpoint: str, method: str = "GET", data: Any = None) -> Any:
        """Make an authenticated API request and return the decoded JSON body"""
        token = await self.authenticate(session)

        kwargs = {"headers": {"Authorization": f"Bearer {token}"}}
        if data is not None and method in ("POST", "PUT", "PATCH"):
            kwargs["json"] = data

        url = f"{self.base_url}{endpoint}"
        try:
            async with self._client() as client:
                response = await client.request(method, url, **kwargs)
        except httpx.RequestError as e:
            logger.error(f"Error communicating with Procore ({method} {endpoint}): {e}")
            raise UpstreamUnavailable(f"API request failed: {e}") from e

        if response.status_code == 401:
            logger.warning(f"Procore rejected the access token ({method} {endpoint})")
            raise AuthenticationFailed("API request was not authorized")

        if not response.is_success:
            logger.error(f"API request failed ({method} {endpoint}): Status {response.status_code}")
            raise UpstreamUnavailable(
                f"API request failed: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
            )

        if not response.content:
            return None
        return response.json()

    async def get_me(self, session: ProcoreSession) -> Dict[str, Any]:
        return await self.request(session, "/me")

    async def get_companies(self, session: ProcoreSession) -> List[Dict[str, Any]]:
        return await self.request(session, "/companies")

    async def get_projects(self, session: ProcoreSession, company_id) -> List[Dict[str, Any]]:
        return await self.request(session, f"/companies/{company_id}/projects")

    async def get_project(self, session: ProcoreSession, project_id: str) -> Dict[str, Any]:
        return await self.request(session, f"/projects/{project_id}")

    async def get_purchase_orders(self, session: ProcoreSession, project_id: str) -> List[PurchaseOrder]:
        data = await self.request(session, f"/projects/{project_id}/purchase_orders")
        return [PurchaseOrder.model_validate(po) for po in data or []]

    async def get_line_items(self, session: ProcoreSession, project_id: str, po_id: str) -> List[PurchaseOrderLineItem]:
        data = await self.request(session, f"/projects/{project_id}/purchase_order_contracts/{po_id}/line_items")
        return [PurchaseOrderLineItem.model_validate(line) for line in data or []]

    async def get_rfis(self, session: ProcoreSession, project_id: str) -> List[Rfi]:
        data = await self.request(session, f"/projects/{project_id}/rfis")
        return [Rfi.model_validate(rfi) for rfi in data or []]

    async def get_inventory(self, session: ProcoreSession, project_id: str) -> List[Dict[str, Any]]:
        data = await self.request(session, f"/projects/{project_id}/custom_fields/low_voltage_inventory")
        return data or []

    async def put_inventory(self, session: ProcoreSession, project_id: str, items: List[Dict[str, Any]]) -> None:
        await self.request(session, f"/projects/{project_id}/custom_fields/low_voltage_inventory", "PUT", items)
