"""API wrapper for the GitHub Gist REST API.

This module wraps a requests Session and provides error translation from HTTP
status codes and transport exceptions to our typed exception hierarchy. It is
a thin layer: one method per endpoint, no caching, no retries. Concurrency
checks built on top of these calls live in src.gist_client.repository.
"""

import logging
import re
from typing import Any, Dict, List, NamedTuple, Optional

import requests
from requests.exceptions import ConnectionError, RequestException, Timeout

from .errors import (
    AuthenticationFailedError,
    ConcurrentModificationError,
    DocumentNotFoundError,
    TransientError,
)

logger = logging.getLogger(__name__)

DEFAULT_API_BASE_URL = 'https://api.github.com'
GITHUB_API_VERSION = '2022-11-28'
# Host-side cap for per_page on list endpoints
MAX_PAGE_SIZE = 100


class GistResponse(NamedTuple):
    """Decoded response of a gist API call."""
    status_code: int
    data: Any
    etag: Optional[str]

    @property
    def not_modified(self) -> bool:
        return self.status_code == 304


class GistAPI:
    """Wrapper around the gist endpoints with error translation.

    This class:
    1. Adds the bearer token and GitHub media-type headers to every request
    2. Translates HTTP errors to typed exceptions
    3. Keeps tokens out of log output and error messages

    Example:
        >>> api = GistAPI(access_token="ghp_...")
        >>> response = api.get_gist("aa5a315d61ae9438b18d")
        >>> response.etag
        'W/"4c7d..."'
    """

    def __init__(
        self,
        access_token: str,
        base_url: str = DEFAULT_API_BASE_URL,
        timeout: float = 30,
        session: Optional[requests.Session] = None,
    ):
        """Initialize the API wrapper.

        Args:
            access_token: GitHub token with the 'gist' scope
            base_url: API root (override for GitHub Enterprise)
            timeout: Per-request timeout in seconds
            session: Optional pre-built session (tests inject a mock)
        """
        self._access_token = access_token
        self._base_url = base_url.rstrip('/')
        self._timeout = timeout
        self._session = session

    def _get_session(self) -> requests.Session:
        """Get or create the HTTP session (lazily, on first request)."""
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def _headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {
            'Authorization': f'Bearer {self._access_token}',
            'Accept': 'application/vnd.github+json',
            'X-GitHub-Api-Version': GITHUB_API_VERSION,
        }
        if extra:
            headers.update(extra)
        return headers

    def _sanitize_credentials(self, text: str) -> str:
        """Sanitize error messages to prevent token leakage.

        Example:
            >>> api._sanitize_credentials("Authorization: Bearer ghp_abc123")
            'Authorization: ***REDACTED***'
        """
        if not text:
            return text

        sanitized = text

        # 1. Authorization headers
        sanitized = re.sub(
            r'Authorization:\s*[^\n\r]+',
            'Authorization: ***REDACTED***',
            sanitized,
            flags=re.IGNORECASE
        )

        # 2. Bearer tokens
        sanitized = re.sub(
            r'Bearer\s+[^\s\n\r]+',
            'Bearer ***REDACTED***',
            sanitized,
            flags=re.IGNORECASE
        )

        # 3. GitHub token formats (ghp_, gho_, ghu_, ghs_, ghr_, github_pat_)
        sanitized = re.sub(
            r'\b(gh[pousr]_[A-Za-z0-9]{8,}|github_pat_[A-Za-z0-9_]{8,})\b',
            '***REDACTED***',
            sanitized
        )

        # 4. token=value style fields
        sanitized = re.sub(
            r'(access_?token|token)["\']?\s*[:=]\s*["\']?([^"\'\s&]+)',
            r'\1=***REDACTED***',
            sanitized,
            flags=re.IGNORECASE
        )

        # 5. The configured token itself, whatever its shape
        if self._access_token:
            sanitized = sanitized.replace(self._access_token, '***REDACTED***')

        return sanitized

    def _translate_error(self, exception: Exception, operation: str) -> Exception:
        """Translate a transport exception to a typed exception.

        Args:
            exception: The original exception from requests
            operation: Description of the operation that failed (for logging)

        Returns:
            Exception: TransientError carrying a sanitized message
        """
        safe_error_msg = self._sanitize_credentials(str(exception))
        if isinstance(exception, (Timeout, ConnectionError)):
            logger.warning(f"Gist API unreachable during {operation}: {safe_error_msg}")
            return TransientError(f"Gist API is not reachable at {self._base_url} ({operation})")

        logger.error(f"API operation failed: {operation} - {safe_error_msg}")
        return TransientError(f"Gist API failure during {operation}")

    def _error_for_status(
        self,
        response: requests.Response,
        operation: str,
        gist_id: Optional[str] = None,
    ) -> Exception:
        """Translate an HTTP error status to a typed exception.

        401/403 map to AuthenticationFailedError, except when the 403 is a
        rate-limit response; 404 to DocumentNotFoundError; 409/412 to
        ConcurrentModificationError; anything else is transient.
        """
        status_code = response.status_code
        endpoint = f"{self._base_url} ({operation})"

        if status_code == 429 or (
            status_code == 403 and response.headers.get('X-RateLimit-Remaining') == '0'
        ):
            logger.warning(f"Rate limit hit during {operation}")
            return TransientError(f"Gist API rate limit hit during {operation}", status_code)

        if status_code in (401, 403):
            return AuthenticationFailedError(endpoint=endpoint, status_code=status_code)

        if status_code == 404:
            return DocumentNotFoundError(gist_id or 'unknown')

        if status_code in (409, 412):
            return ConcurrentModificationError(
                gist_id or 'unknown',
                message=f"Gist {gist_id} was rejected as a conflicting write ({status_code})",
            )

        body = self._sanitize_credentials(getattr(response, 'text', '') or '')
        logger.error(f"API operation failed: {operation} - HTTP {status_code} {body[:200]}")
        return TransientError(f"Gist API failure during {operation} (HTTP {status_code})", status_code)

    def _request(
        self,
        method: str,
        path: str,
        operation: str,
        gist_id: Optional[str] = None,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> GistResponse:
        url = f"{self._base_url}{path}"
        logger.debug(f"{method} {path}")
        try:
            response = self._get_session().request(
                method,
                url,
                headers=self._headers(headers),
                params=params,
                json=json,
                timeout=self._timeout,
            )
        except RequestException as e:
            raise self._translate_error(e, operation) from e

        if response.status_code == 304:
            return GistResponse(304, None, response.headers.get('ETag'))

        if response.status_code >= 400:
            raise self._error_for_status(response, operation, gist_id)

        try:
            data = response.json() if response.content else None
        except ValueError as e:
            raise TransientError(f"Invalid JSON in response to {operation}") from e

        return GistResponse(response.status_code, data, response.headers.get('ETag'))

    def create_gist(
        self,
        filename: str,
        content: str,
        description: str,
        public: bool = False,
    ) -> GistResponse:
        """Create a gist holding one file.

        Args:
            filename: Name of the single file
            content: File content
            description: Gist description
            public: Whether the gist is publicly listed

        Returns:
            GistResponse with the gist JSON and its ETag
        """
        return self._request(
            'POST',
            '/gists',
            'create_gist',
            json={
                'description': description,
                'public': public,
                'files': {filename: {'content': content}},
            },
        )

    def get_gist(self, gist_id: str, if_none_match: Optional[str] = None) -> GistResponse:
        """Fetch a gist, optionally as a conditional request.

        Args:
            gist_id: Gist to fetch
            if_none_match: Last seen ETag; the host answers 304 when unchanged

        Returns:
            GistResponse; ``not_modified`` is True on a 304

        Raises:
            DocumentNotFoundError: If the gist does not exist
        """
        headers = {'If-None-Match': if_none_match} if if_none_match else None
        return self._request(
            'GET',
            f'/gists/{gist_id}',
            f'get_gist({gist_id})',
            gist_id=gist_id,
            headers=headers,
        )

    def update_gist(
        self,
        gist_id: str,
        filename: str,
        content: str,
        description: Optional[str] = None,
    ) -> GistResponse:
        payload: Dict[str, Any] = {'files': {filename: {'content': content}}}
        if description is not None:
            payload['description'] = description
        return self._request(
            'PATCH',
            f'/gists/{gist_id}',
            f'update_gist({gist_id})',
            gist_id=gist_id,
            json=payload,
        )

    def fetch_raw(self, raw_url: str) -> str:
        """Fetch the full content of a file the gist API returned truncated."""
        try:
            response = self._get_session().get(
                raw_url,
                headers={'Authorization': f'Bearer {self._access_token}'},
                timeout=self._timeout,
            )
        except RequestException as e:
            raise self._translate_error(e, 'fetch_raw') from e
        if response.status_code >= 400:
            raise self._error_for_status(response, 'fetch_raw')
        return response.text

    def list_commits(self, gist_id: str) -> List[Dict[str, Any]]:
        """Fetch the revision history of a gist, newest first."""
        response = self._request(
            'GET',
            f'/gists/{gist_id}/commits',
            f'list_commits({gist_id})',
            gist_id=gist_id,
        )
        if not isinstance(response.data, list):
            raise TransientError(f"Unexpected commit history payload for gist {gist_id}")
        return response.data

    def list_gists(self, per_page: int = MAX_PAGE_SIZE, page: int = 1) -> List[Dict[str, Any]]:
        """List gists of the authenticated user (one page)."""
        per_page = max(1, min(per_page, MAX_PAGE_SIZE))
        response = self._request(
            'GET',
            '/gists',
            f'list_gists(page={page})',
            params={'per_page': per_page, 'page': page},
        )
        if not isinstance(response.data, list):
            raise TransientError("Unexpected gist list payload")
        return response.data
