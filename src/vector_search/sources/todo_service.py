"""
Client for the todo service, the source of existing tasks for bulk population.
"""

import logging
from typing import Any, Dict, List, Optional

import requests

from ..core.config import SearchConfig
from ..core.exceptions import SourceError


logger = logging.getLogger(__name__)


class TodoServiceClient:
    """
    Fetches todos over HTTP.

    Example:
        >>> client = TodoServiceClient("http://localhost:3002", auth_token="...")
        >>> todos = client.fetch_todos()
    """

    def __init__(
        self,
        base_url: str,
        auth_token: Optional[str] = None,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize the client.

        Args:
            base_url: Todo service base URL
            auth_token: Bearer token sent with every request
            timeout: Request timeout in seconds
            session: Existing session to reuse
        """
        self.base_url = base_url.rstrip("/")
        self.auth_token = auth_token
        self.timeout = timeout
        self.session = session or requests.Session()

    @classmethod
    def from_config(cls, config: SearchConfig) -> "TodoServiceClient":
        return cls(config.todo_service_url, auth_token=config.auth_token)

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.auth_token:
            headers["Authorization"] = f"Bearer {self.auth_token}"
        return headers

    def fetch_todos(self) -> List[Dict[str, Any]]:
        """
        Fetch all todos visible to the token.

        The service may answer with a bare list or with {"todos": [...]}.

        Raises:
            SourceError: On connection failure, non-2xx status or an
                unexpected payload
        """
        url = f"{self.base_url}/todos"
        logger.info(f"Fetching todos from {url}")

        try:
            response = self.session.get(url, headers=self._headers(), timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logger.error(f"Failed to reach todo service: {e}")
            raise SourceError(f"Failed to reach todo service at {url}: {e}") from e

        if not response.ok:
            raise SourceError(
                f"Todo service returned {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise SourceError(f"Todo service returned invalid JSON: {e}") from e

        if isinstance(payload, dict):
            payload = payload.get("todos")
        if not isinstance(payload, list):
            raise SourceError("Todo service response does not contain a list of todos")

        logger.info(f"Fetched {len(payload)} todos")
        return payload

    def close(self) -> None:
        """Close the session."""
        if self.session:
            self.session.close()
