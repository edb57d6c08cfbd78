"""Local offline mirror of the bookmark tree.

The mirror is a single YAML file holding the last local tree together with
the bound gist id and the dirty flag. It is written after every local
mutation and read once at startup. It is never consulted for conflict
detection and never treated as authoritative over the remote document.

Mirror file structure:
    document_id: aa5a315d61ae9438b18d
    dirty: false
    last_sync_at: "2024-01-15T10:30:00.000Z"
    tree:
      version: 1
      categories: [...]
"""

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

import yaml

from src.bookmark_model.models import Root

from .errors import MirrorError, SyncFilesystemError

logger = logging.getLogger(__name__)


@dataclass
class MirrorState:
    """Contents of the offline mirror.

    Attributes:
        tree: Last local tree (None if never written)
        document_id: Gist the tree was last bound to
        dirty: Whether the tree had unsynced edits when written
        last_sync_at: ISO 8601 timestamp of the last successful sync
    """
    tree: Optional[Root] = None
    document_id: Optional[str] = None
    dirty: bool = False
    last_sync_at: Optional[str] = None


class OfflineMirror:
    """Reads and writes the mirror file.

    Example:
        >>> mirror = OfflineMirror(OfflineMirror.default_path())
        >>> state = mirror.load()
        >>> mirror.save(MirrorState(tree=root, dirty=True))
    """

    DEFAULT_MIRROR_DIR = '.bookmarkdown'
    DEFAULT_MIRROR_FILE = 'mirror.yaml'

    def __init__(self, path: str):
        self.path = path

    @classmethod
    def default_path(cls, base_dir: str = '.') -> str:
        return os.path.join(base_dir, cls.DEFAULT_MIRROR_DIR, cls.DEFAULT_MIRROR_FILE)

    def load(self) -> MirrorState:
        """Read the mirror.

        Returns:
            MirrorState (empty when the file is missing or empty)

        Raises:
            SyncFilesystemError: If the file exists but cannot be read
            MirrorError: If the file is malformed
        """
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                content = f.read()
        except FileNotFoundError:
            return MirrorState()
        except PermissionError:
            raise SyncFilesystemError(self.path, 'read', 'Permission denied')
        except Exception as e:
            raise SyncFilesystemError(self.path, 'read', str(e))

        if not content.strip():
            return MirrorState()

        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise MirrorError(f"Invalid YAML syntax: {str(e)}")

        if data is None:
            return MirrorState()
        if not isinstance(data, dict):
            raise MirrorError(f"Mirror must be a YAML dictionary, got {type(data).__name__}")

        return self._parse_state(data)

    def save(self, state: MirrorState) -> None:
        """Write the mirror, replacing the previous content.

        Raises:
            SyncFilesystemError: If the file cannot be written
        """
        data: Dict[str, Any] = {
            'document_id': state.document_id,
            'dirty': state.dirty,
            'last_sync_at': state.last_sync_at,
            'tree': state.tree.to_dict() if state.tree is not None else None,
        }
        yaml_str = yaml.safe_dump(
            data,
            default_flow_style=False,
            allow_unicode=True,
            sort_keys=False
        )

        mirror_dir = os.path.dirname(self.path)
        if mirror_dir:
            try:
                os.makedirs(mirror_dir, exist_ok=True)
            except Exception as e:
                raise SyncFilesystemError(mirror_dir, 'create_directory', str(e))

        # Replaced atomically via a sibling temp file
        tmp_path = f"{self.path}.tmp"
        try:
            with open(tmp_path, 'w', encoding='utf-8') as f:
                f.write(yaml_str)
            os.replace(tmp_path, self.path)
        except PermissionError:
            raise SyncFilesystemError(self.path, 'write', 'Permission denied')
        except Exception as e:
            raise SyncFilesystemError(self.path, 'write', str(e))
        logger.debug(f"Offline mirror written to {self.path}")

    def _parse_state(self, data: Dict[str, Any]) -> MirrorState:
        document_id = data.get('document_id')
        if document_id is not None and not isinstance(document_id, str):
            raise MirrorError(
                f"must be a string, got {type(document_id).__name__}", 'document_id'
            )

        dirty = data.get('dirty', False)
        if not isinstance(dirty, bool):
            raise MirrorError("must be true or false", 'dirty')

        last_sync_at = data.get('last_sync_at')
        if last_sync_at is not None and not isinstance(last_sync_at, str):
            raise MirrorError(
                f"must be a string (ISO 8601 timestamp), got {type(last_sync_at).__name__}",
                'last_sync_at'
            )

        tree = None
        if data.get('tree') is not None:
            try:
                tree = Root.from_dict(data['tree'])
            except (TypeError, ValueError) as e:
                raise MirrorError(str(e), 'tree')

        return MirrorState(
            tree=tree,
            document_id=document_id,
            dirty=dirty,
            last_sync_at=last_sync_at,
        )
