"""InitCommand for configuration initialization.

This module implements the init command that writes the sync settings file,
optionally pointing it at an existing gist given by id or URL.
"""

import logging
import os
import re
from dataclasses import replace
from typing import Optional
from urllib.parse import urlparse

from src.gist_client.errors import SyncError
from src.sync.config import SettingsLoader, SyncSettings

from .errors import InitError

logger = logging.getLogger(__name__)


class InitCommand:
    """Handles initialization of sync settings.

    The InitCommand accepts a gist id or a gist URL, validates it, and creates
    the .bookmarkdown/config.yaml file. Without a gist the first sync looks
    the document up by filename or creates it.

    Example:
        >>> init = InitCommand()
        >>> init.run(
        ...     gist="https://gist.github.com/octocat/aa5a315d61ae9438b18d",
        ...     filename="bookmarks.md",
        ... )
    """

    # Gist ids are hexadecimal (older ones are purely numeric)
    GIST_ID = re.compile(r'^[0-9a-fA-F]+$')
    # https://gist.github.com/USER/ID[/REVISION] or https://gist.github.com/ID
    GIST_URL_PATH = re.compile(r'^/(?:[^/]+/)?([0-9a-fA-F]+)(?:/[0-9a-fA-F]+)?/?$')

    def __init__(self, config_path: Optional[str] = None):
        """Initialize the init command.

        Args:
            config_path: Optional settings file path (defaults to .bookmarkdown/config.yaml)
        """
        self.config_path = config_path or SettingsLoader.default_path()

    def parse_gist_reference(self, reference: str) -> str:
        """Extract a gist id from an id or a gist URL.

        Args:
            reference: Bare gist id or https://gist.github.com/... URL

        Returns:
            The gist id

        Raises:
            InitError: If the reference is neither
        """
        if not reference or not reference.strip():
            raise InitError("Gist reference cannot be empty")
        reference = reference.strip()

        if self.GIST_ID.match(reference):
            return reference

        parsed = urlparse(reference)
        if parsed.scheme not in ('http', 'https') or not parsed.netloc:
            raise InitError(
                f"Invalid gist reference: '{reference}'\n"
                f"Expected a gist id or a URL like https://gist.github.com/<user>/<id>"
            )

        match = self.GIST_URL_PATH.match(parsed.path)
        if not match:
            raise InitError(f"Could not find a gist id in URL: {reference}")
        return match.group(1)

    def run(
        self,
        gist: Optional[str] = None,
        filename: Optional[str] = None,
        public: bool = False,
        force: bool = False,
    ) -> SyncSettings:
        """Write the settings file.

        Args:
            gist: Optional gist id or URL to bind to
            filename: Markdown file name inside the gist
            public: Visibility for a gist created on first sync
            force: Overwrite an existing settings file

        Returns:
            The settings that were written

        Raises:
            InitError: If the settings file exists (without force) or cannot be written
        """
        if os.path.exists(self.config_path) and not force:
            raise InitError(
                f"Settings already exist at {self.config_path} (use --force to overwrite)"
            )

        settings = SyncSettings(is_public=public)
        if filename is not None:
            if not filename.strip():
                raise InitError("Filename cannot be empty")
            settings = replace(settings, filename=filename.strip())
        if gist is not None:
            settings = replace(settings, document_id=self.parse_gist_reference(gist))

        try:
            SettingsLoader.save(self.config_path, settings)
        except SyncError as e:
            raise InitError(f"Failed to write settings: {e}") from e

        logger.info(f"Wrote settings to {self.config_path}")
        return settings
