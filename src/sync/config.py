"""Settings file loading and validation.

This module handles loading and saving the sync settings from a YAML file.
A missing or empty file yields the defaults; the access token is never stored
here (see src.gist_client.auth).
"""

import os
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

import yaml

from src.gist_client.api_wrapper import MAX_PAGE_SIZE
from src.gist_client.repository import DEFAULT_DESCRIPTION, DEFAULT_FILENAME

from .change_detector import DEFAULT_POLL_INTERVAL
from .errors import ConfigError, SyncFilesystemError

DEFAULT_DEBOUNCE_SECONDS = 1.0


@dataclass
class SyncSettings:
    """User-tunable sync settings stored in .bookmarkdown/config.yaml.

    Attributes:
        filename: Markdown file name inside the gist
        document_id: Gist id to bind to (None: look up by filename)
        description: Description for a newly created gist
        is_public: Visibility for a newly created gist
        auto_sync: Whether edits schedule a debounced sync
        debounce_seconds: Quiet window before an auto-sync runs
        poll_interval_seconds: Interval of the remote change detector
        per_page: Page size when looking up the gist by filename

    Example:
        >>> settings = SyncSettings(auto_sync=False)
        >>> settings.filename
        'bookmarks.md'
    """
    filename: str = DEFAULT_FILENAME
    document_id: Optional[str] = None
    description: str = DEFAULT_DESCRIPTION
    is_public: bool = False
    auto_sync: bool = True
    debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS
    poll_interval_seconds: float = DEFAULT_POLL_INTERVAL
    per_page: int = MAX_PAGE_SIZE


class SettingsLoader:
    """Handles settings file loading, validation, and saving.

    Settings file structure:
        filename: bookmarks.md
        document_id: aa5a315d61ae9438b18d
        auto_sync: true
        debounce_seconds: 1.0
        poll_interval_seconds: 10.0
    """

    DEFAULT_CONFIG_DIR = '.bookmarkdown'
    DEFAULT_CONFIG_FILE = 'config.yaml'

    _STRING_FIELDS = ('filename', 'description')
    _BOOL_FIELDS = ('is_public', 'auto_sync')
    _NUMBER_FIELDS = ('debounce_seconds', 'poll_interval_seconds')

    @classmethod
    def default_path(cls, base_dir: str = '.') -> str:
        return os.path.join(base_dir, cls.DEFAULT_CONFIG_DIR, cls.DEFAULT_CONFIG_FILE)

    @classmethod
    def load(cls, config_path: str) -> SyncSettings:
        """Load and parse settings from a YAML file.

        Args:
            config_path: Path to the YAML settings file

        Returns:
            SyncSettings (defaults when the file is missing or empty)

        Raises:
            SyncFilesystemError: If the file exists but cannot be read
            ConfigError: If the file is not valid YAML or a field is invalid
        """
        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                content = f.read()
        except FileNotFoundError:
            return SyncSettings()
        except PermissionError:
            raise SyncFilesystemError(config_path, 'read', 'Permission denied')
        except Exception as e:
            raise SyncFilesystemError(config_path, 'read', str(e))

        if not content.strip():
            return SyncSettings()

        try:
            config_dict = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML syntax: {str(e)}")

        if config_dict is None:
            return SyncSettings()

        if not isinstance(config_dict, dict):
            raise ConfigError(
                f"Config must be a YAML dictionary, got {type(config_dict).__name__}"
            )

        return cls._parse_settings(config_dict)

    @classmethod
    def save(cls, config_path: str, settings: SyncSettings) -> None:
        """Save settings to a YAML file.

        Raises:
            SyncFilesystemError: If the file cannot be written
        """
        yaml_str = yaml.safe_dump(
            asdict(settings),
            default_flow_style=False,
            allow_unicode=True,
            sort_keys=False
        )

        config_dir = os.path.dirname(config_path)
        if config_dir:
            try:
                os.makedirs(config_dir, exist_ok=True)
            except Exception as e:
                raise SyncFilesystemError(config_dir, 'create_directory', str(e))

        try:
            with open(config_path, 'w', encoding='utf-8') as f:
                f.write(yaml_str)
        except PermissionError:
            raise SyncFilesystemError(config_path, 'write', 'Permission denied')
        except Exception as e:
            raise SyncFilesystemError(config_path, 'write', str(e))

    @classmethod
    def _parse_settings(cls, config_dict: Dict[str, Any]) -> SyncSettings:
        """Validate a raw settings dictionary.

        Unknown keys are ignored so older tools can read newer files.
        """
        values: Dict[str, Any] = {}

        for name in cls._STRING_FIELDS:
            if name in config_dict:
                value = config_dict[name]
                if not isinstance(value, str) or not value.strip():
                    raise ConfigError("must be a non-empty string", name)
                values[name] = value.strip()

        if config_dict.get('document_id') is not None:
            document_id = config_dict['document_id']
            if not isinstance(document_id, str):
                raise ConfigError(
                    f"must be a string, got {type(document_id).__name__}",
                    'document_id'
                )
            values['document_id'] = document_id.strip() or None

        for name in cls._BOOL_FIELDS:
            if name in config_dict:
                if not isinstance(config_dict[name], bool):
                    raise ConfigError("must be true or false", name)
                values[name] = config_dict[name]

        for name in cls._NUMBER_FIELDS:
            if name in config_dict:
                value = config_dict[name]
                if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
                    raise ConfigError("must be a positive number", name)
                values[name] = float(value)

        if 'per_page' in config_dict:
            per_page = config_dict['per_page']
            if isinstance(per_page, bool) or not isinstance(per_page, int) or not 1 <= per_page <= MAX_PAGE_SIZE:
                raise ConfigError(f"must be an integer between 1 and {MAX_PAGE_SIZE}", 'per_page')
            values['per_page'] = per_page

        return SyncSettings(**values)
