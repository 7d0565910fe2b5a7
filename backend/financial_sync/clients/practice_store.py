"""
Practice-Management Store Client

Thin async client for the practice-management Data API that holds billable
time entries. Handles:
- Session login / release (HTTP Basic -> bearer token)
- Date-range _find queries with offset/limit paging
- One re-login when the store reports an invalid token

Returns raw ``fieldData`` dicts; normalization happens in
``financial_sync.readers``.
"""

import logging
from datetime import date
from typing import Any, Dict, List, Optional

import httpx

from config import get_settings
from financial_sync.errors import SourceUnavailable
from financial_sync.session import SourceSession, ensure_valid_session

logger = logging.getLogger(__name__)

# Data API message codes
FM_CODE_OK = "0"
FM_CODE_NO_RECORDS = "401"
FM_CODE_INVALID_TOKEN = "952"


def to_store_date(value: date) -> str:
    """The store expects MM/DD/YYYY in find requests."""
    return value.strftime("%m/%d/%Y")


def _message_code(payload: Dict[str, Any]) -> Optional[str]:
    messages = payload.get("messages") or []
    if messages:
        return str(messages[0].get("code"))
    return None


class PracticeStoreClient:
    """
    Client for the practice-management store.

    The session token is held on the instance and refreshed through
    ``ensure_valid_session``; callers should ``await client.close()`` (or use
    ``async with``) to release it.
    """

    def __init__(
        self,
        base_url: str,
        database: str,
        username: str,
        password: str,
        layout: str = "dapiRecords",
        page_size: int = 500,
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.database = database
        self.layout = layout
        self.page_size = page_size
        self._auth = (username, password)
        self._http = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_http = http_client is None
        self.session: Optional[SourceSession] = None

    @classmethod
    def from_settings(cls, http_client: Optional[httpx.AsyncClient] = None) -> "PracticeStoreClient":
        settings = get_settings()
        return cls(
            base_url=settings.FM_URL,
            database=settings.FM_DATABASE,
            username=settings.FM_USER,
            password=settings.FM_PASSWORD,
            layout=settings.FM_LAYOUT,
            page_size=settings.FM_PAGE_SIZE,
            timeout=settings.FM_TIMEOUT_SECONDS,
            http_client=http_client,
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    @property
    def _database_url(self) -> str:
        return f"{self.base_url}/databases/{self.database}"

    # ==================== SESSION ====================

    async def login(self) -> SourceSession:
        """Open a new Data API session."""
        try:
            response = await self._http.post(
                f"{self._database_url}/sessions",
                auth=self._auth,
                json={},
            )
        except httpx.HTTPError as e:
            raise SourceUnavailable(f"Practice store unreachable: {e}") from e

        if response.status_code != 200:
            raise SourceUnavailable(
                f"Practice store authentication failed (HTTP {response.status_code})"
            )

        token = (response.json().get("response") or {}).get("token")
        if not token:
            raise SourceUnavailable("Practice store did not return a session token")

        logger.info("Practice store session opened")
        return SourceSession.issued(token)

    async def release(self):
        """Release the current session token. Failures are logged only."""
        if self.session is None:
            return
        token = self.session.token
        self.session = None
        try:
            response = await self._http.delete(f"{self._database_url}/sessions/{token}")
            if response.status_code != 200:
                logger.warning(f"Failed to release practice store session (HTTP {response.status_code})")
        except httpx.HTTPError as e:
            logger.warning(f"Error releasing practice store session: {e}")

    async def close(self):
        await self.release()
        if self._owns_http:
            await self._http.aclose()

    # ==================== QUERIES ====================

    async def list(self, organization_id: str, start_date: date, end_date: date) -> List[Dict[str, Any]]:
        """
        Fetch every time entry dated within [start_date, end_date].

        The store is single-tenant, so ``organization_id`` is only used for
        logging; it is stamped onto records during normalization.
        """
        query = [{"DateStart": f"{to_store_date(start_date)}...{to_store_date(end_date)}"}]
        rows: List[Dict[str, Any]] = []
        offset = 1

        while True:
            payload = await self._find(query, offset)
            response = payload.get("response") or {}
            data = response.get("data") or []
            found_count = int((response.get("dataInfo") or {}).get("foundCount", len(data)))

            rows.extend(record.get("fieldData") or {} for record in data)

            if not data or offset + len(data) - 1 >= found_count:
                break
            offset += len(data)

        logger.info(
            f"Fetched {len(rows)} practice store records for {organization_id} "
            f"({start_date.isoformat()} to {end_date.isoformat()})"
        )
        return rows

    async def _find(self, query: List[Dict[str, Any]], offset: int) -> Dict[str, Any]:
        body = {"query": query, "offset": offset, "limit": self.page_size}
        url = f"{self._database_url}/layouts/{self.layout}/_find"

        for attempt in range(2):
            self.session = await ensure_valid_session(self.session, self.login)
            try:
                response = await self._http.post(
                    url,
                    json=body,
                    headers={"Authorization": f"Bearer {self.session.token}"},
                )
            except httpx.HTTPError as e:
                raise SourceUnavailable(f"Practice store unreachable: {e}") from e

            try:
                payload = response.json()
            except ValueError:
                raise SourceUnavailable(
                    f"Practice store returned a non-JSON response (HTTP {response.status_code})"
                )

            code = _message_code(payload)

            if code == FM_CODE_NO_RECORDS:
                return {"response": {"data": [], "dataInfo": {"foundCount": 0}}}

            if (response.status_code == 401 or code == FM_CODE_INVALID_TOKEN) and attempt == 0:
                logger.info("Practice store token rejected, re-authenticating")
                self.session = None
                continue

            if response.status_code != 200 or code not in (None, FM_CODE_OK):
                raise SourceUnavailable(
                    f"Practice store query failed (HTTP {response.status_code}, code {code})"
                )

            return payload

        raise SourceUnavailable("Practice store rejected a freshly issued session token")
