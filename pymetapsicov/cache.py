"""
Stage cache for pymetapsicov.

Every stage output is identified by its workspace-relative file name. A
stage counts as done when its output is present and non-empty, which makes
an interrupted run resumable against the same workspace.
"""

import json
import os
import shutil
from typing import Dict, Optional


class WorkspaceStore:
    """Stage outputs stored as files inside a job workspace directory."""

    MANIFEST = ".stage_inputs.json"

    def __init__(self, workspace: str):
        self.workspace = workspace

    def path(self, name: str) -> str:
        return os.path.join(self.workspace, name)

    def exists(self, name: str) -> bool:
        return os.path.exists(self.path(name))

    def size(self, name: str) -> int:
        path = self.path(name)
        if not os.path.isfile(path):
            return 0
        return os.path.getsize(path)

    def read(self, name: str) -> str:
        with open(self.path(name), "r") as f:
            return f.read()

    def write(self, name: str, content: str) -> None:
        path = self.path(name)
        parent = os.path.dirname(path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        with open(path, "w") as f:
            f.write(content)

    def copy(self, source: str, dest: str) -> None:
        shutil.copyfile(self.path(source), self.path(dest))

    def load_hashes(self) -> Dict[str, str]:
        if not self.exists(self.MANIFEST):
            return {}
        return json.loads(self.read(self.MANIFEST))

    def save_hashes(self, hashes: Dict[str, str]) -> None:
        self.write(self.MANIFEST, json.dumps(hashes, indent=1, sort_keys=True))


class MemoryStore:
    """In-memory store with the same interface as WorkspaceStore."""

    def __init__(self, files: Optional[Dict[str, str]] = None):
        self.files: Dict[str, str] = dict(files or {})
        self.hashes: Dict[str, str] = {}

    def path(self, name: str) -> str:
        return name

    def exists(self, name: str) -> bool:
        return name in self.files

    def size(self, name: str) -> int:
        return len(self.files.get(name, ""))

    def read(self, name: str) -> str:
        try:
            return self.files[name]
        except KeyError:
            raise FileNotFoundError(name) from None

    def write(self, name: str, content: str) -> None:
        self.files[name] = content

    def copy(self, source: str, dest: str) -> None:
        self.files[dest] = self.read(source)

    def load_hashes(self) -> Dict[str, str]:
        return dict(self.hashes)

    def save_hashes(self, hashes: Dict[str, str]) -> None:
        self.hashes = dict(hashes)


class StageCache:
    """Lookup of finished stage outputs.

    Parameters
    ----------
    store : WorkspaceStore or MemoryStore
        Backing storage for stage outputs.
    enabled : bool
        When False every lookup misses and all stages rerun.
    """

    def __init__(self, store, enabled: bool = True):
        self.store = store
        self.enabled = enabled

    def has(self, stage_id: str, inputs_hash: Optional[str] = None) -> bool:
        """Whether a stage is finished.

        Without ``inputs_hash`` a stage is finished when its output is
        non-empty. With it, a stage recorded under the same hash is finished
        even if its output is empty, and one recorded under another hash
        must rerun.
        """
        if not self.enabled:
            return False
        if inputs_hash is not None:
            recorded = self.store.load_hashes().get(stage_id)
            if recorded is not None:
                return recorded == inputs_hash and self.store.exists(stage_id)
        # Outputs from runs that did not record their inputs stay valid
        return self.store.size(stage_id) > 0

    def get(self, stage_id: str, inputs_hash: Optional[str] = None) -> Optional[str]:
        """Return the cached output of a stage, or None if it must run."""
        if not self.has(stage_id, inputs_hash):
            return None
        return self.store.read(stage_id)

    def put(self, stage_id: str, content: str, inputs_hash: Optional[str] = None) -> None:
        self.store.write(stage_id, content)
        if inputs_hash is not None:
            hashes = self.store.load_hashes()
            hashes[stage_id] = inputs_hash
            self.store.save_hashes(hashes)
