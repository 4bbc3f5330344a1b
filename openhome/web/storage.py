"""
On-disk store for uploaded saves and their per-save metadata.

Saves are kept byte-for-byte under `saves_dir`; metadata (such as the box
offset the user settled on) is a small JSON file per save under `meta_dir`.
"""

import json
import time
import logging
import secrets
from typing import Dict, List, Optional, Any
from pathlib import Path

logger = logging.getLogger(__name__)

META_EXT = '.json'


class SaveStore:
    """Uploaded save files plus a JSON metadata side-car for each."""

    def __init__(self, saves_dir: Optional[str] = None, meta_dir: Optional[str] = None):
        root = Path.home() / '.openhome'
        self.saves_dir = Path(saves_dir) if saves_dir else root / 'saves'
        self.meta_dir  = Path(meta_dir) if meta_dir else root / 'meta'
        self.saves_dir.mkdir(parents=True, exist_ok=True)
        self.meta_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"SaveStore ready, saves_dir={self.saves_dir}, meta_dir={self.meta_dir}")

    # ── Saves ──────────────────────────────────────────────────────────────────
    @staticmethod
    def _safe_name(name: str) -> str:
        name = Path(name or "upload").name
        return "".join(c if c.isalnum() or c in "._-" else "_" for c in name) or "upload"

    def _save_path(self, save_id: str) -> Optional[Path]:
        if not save_id or save_id != Path(save_id).name or save_id.startswith('.'):
            return None
        return self.saves_dir / save_id

    def add(self, filename: str, data: bytes) -> Dict[str, str]:
        """Store an uploaded file. Returns its id and original name."""
        save_id = f"{int(time.time() * 1000)}-{secrets.token_hex(4)}-{self._safe_name(filename)}"
        (self.saves_dir / save_id).write_bytes(data)
        logger.info(f"Stored save {save_id} ({len(data)} bytes)")
        return {'id': save_id, 'name': filename}

    def list_saves(self) -> List[Dict[str, Any]]:
        return [
            {'id': p.name, 'name': p.name, 'size': p.stat().st_size}
            for p in sorted(self.saves_dir.iterdir()) if p.is_file()
        ]

    def read(self, save_id: str) -> Optional[bytes]:
        path = self._save_path(save_id)
        if path is None or not path.is_file():
            return None
        return path.read_bytes()

    def exists(self, save_id: str) -> bool:
        path = self._save_path(save_id)
        return path is not None and path.is_file()

    # ── Metadata ───────────────────────────────────────────────────────────────
    def read_meta(self, save_id: str) -> Dict[str, Any]:
        path = self.meta_dir / f"{save_id}{META_EXT}"
        if self._save_path(save_id) is None or not path.exists():
            return {}
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Cannot load metadata for {save_id}: {e}")
            return {}

    def write_meta(self, save_id: str, meta: Dict[str, Any]) -> None:
        if self._save_path(save_id) is None:
            raise ValueError(f"Invalid save id: {save_id!r}")
        path = self.meta_dir / f"{save_id}{META_EXT}"
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(meta or {}, f, indent=2)

    def update_meta(self, save_id: str, **changes: Any) -> Dict[str, Any]:
        meta = self.read_meta(save_id)
        meta.update(changes)
        self.write_meta(save_id, meta)
        return meta
