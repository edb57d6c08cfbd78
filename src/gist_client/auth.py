"""Authentication module for loading the GitHub access token.

This module loads the bearer token used for the gist API from environment
variables using python-dotenv. A missing token is not an error: it switches
the application into local-only mode where no repository is constructed.
"""

import os
from typing import NamedTuple, Optional

from dotenv import load_dotenv

from .errors import ValidationFailureError

# Checked in order; the first non-empty value wins
TOKEN_ENV_VARS = ('BOOKMARKDOWN_GITHUB_TOKEN', 'GITHUB_TOKEN')


class Credentials(NamedTuple):
    """Gist API credentials."""
    access_token: str


class Authenticator:
    """Loads the GitHub access token from environment variables.

    The token is loaded from a .env file using python-dotenv and is never
    cached or logged.

    Recognized environment variables:
        BOOKMARKDOWN_GITHUB_TOKEN: Token dedicated to this tool
        GITHUB_TOKEN: Fallback token with the 'gist' scope

    Example:
        >>> auth = Authenticator()
        >>> if auth.has_token():
        ...     creds = auth.get_credentials()
    """

    def __init__(self):
        """Initialize the authenticator by loading environment variables from .env file."""
        load_dotenv()
        self._logged_out = False

    def get_token(self) -> Optional[str]:
        """Return the access token, or None when running local-only."""
        if self._logged_out:
            return None
        for name in TOKEN_ENV_VARS:
            value = os.getenv(name)
            if value and value.strip():
                return value.strip()
        return None

    def has_token(self) -> bool:
        return self.get_token() is not None

    def get_credentials(self) -> Credentials:
        """Get credentials for the gist API.

        Returns:
            Credentials: A named tuple containing the access token

        Raises:
            ValidationFailureError: If no token is configured
        """
        token = self.get_token()
        if token is None:
            raise ValidationFailureError(
                f"Access token is required (set one of: {', '.join(TOKEN_ENV_VARS)})",
                'access_token',
            )
        return Credentials(access_token=token)

    def logout(self) -> None:
        """Forget the token for the rest of this process."""
        self._logged_out = True
