# store.py
from __future__ import annotations

import logging
import re
import threading
from dataclasses import replace
from pathlib import Path
from typing import Dict, List, Optional

from .document import dump_document, load_document, parse_yaml
from .errors import DefinitionError
from .model import WorkflowDefinition

logger = logging.getLogger(__name__)

WORKFLOW_SUFFIXES = (".yml", ".yaml")

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def file_stem(name: str) -> str:
    """Filesystem-safe file stem for a workflow name ("My CI" -> "My-CI")."""
    stem = _UNSAFE_CHARS.sub("-", name).strip("-.")
    return stem or "workflow"


class DefinitionStore:
    """
    Named WorkflowDefinitions backed by a directory, one YAML file per workflow.

    Readers (`get`, `list`) see snapshots taken under the lock, so they are
    safe while another thread runs `create` / `delete` / `load`.
    """

    def __init__(self, root: str | Path):
        self.root = Path(root)
        self._lock = threading.RLock()
        self._workflows: Dict[str, WorkflowDefinition] = {}
        self._paths: Dict[str, Path] = {}
        self._errors: Dict[Path, str] = {}

    # ----------------------------------------------------------------------
    # Loading
    # ----------------------------------------------------------------------

    def _candidate_files(self) -> List[Path]:
        return sorted(p for p in self.root.iterdir() if p.is_file() and p.suffix in WORKFLOW_SUFFIXES)

    def load(self) -> int:
        """
        (Re)load every workflow document in the directory.

        A malformed file is logged and skipped; it never stops the others from
        loading. When two files declare the same name, the later file (in
        sorted order) wins. Returns the number of workflows registered.
        """
        self.root.mkdir(parents=True, exist_ok=True)

        workflows: Dict[str, WorkflowDefinition] = {}
        paths: Dict[str, Path] = {}
        errors: Dict[Path, str] = {}
        for path in self._candidate_files():
            try:
                definition = load_document(path)
            except DefinitionError as e:
                logger.error("Skipping %s: %s", path.name, e)
                errors[path] = str(e)
                continue
            except (OSError, UnicodeDecodeError) as e:
                logger.error("Skipping %s: cannot read file: %s", path.name, e)
                errors[path] = f"cannot read file: {e}"
                continue

            if definition.name in workflows:
                logger.warning(
                    "Workflow '%s' in %s replaces the one from %s",
                    definition.name, path.name, paths[definition.name].name,
                )
            workflows[definition.name] = definition
            paths[definition.name] = path
            logger.debug("Loaded workflow: %s (%s)", definition.name, path.name)

        with self._lock:
            self._workflows = workflows
            self._paths = paths
            self._errors = errors

        logger.info("Loaded %d workflows from %s", len(workflows), self.root)
        return len(workflows)

    # ----------------------------------------------------------------------
    # Reads
    # ----------------------------------------------------------------------

    def get(self, name: str) -> Optional[WorkflowDefinition]:
        with self._lock:
            return self._workflows.get(name)

    def list(self) -> List[WorkflowDefinition]:
        with self._lock:
            items = list(self._workflows.values())
        return sorted(items, key=lambda wf: wf.name)

    def names(self) -> List[str]:
        return [wf.name for wf in self.list()]

    def errors(self) -> Dict[Path, str]:
        """Files the last `load()` skipped, with the reason."""
        with self._lock:
            return dict(self._errors)

    def path_for(self, name: str) -> Optional[Path]:
        with self._lock:
            return self._paths.get(name)

    def __contains__(self, name: str) -> bool:
        with self._lock:
            return name in self._workflows

    def __len__(self) -> int:
        with self._lock:
            return len(self._workflows)

    # ----------------------------------------------------------------------
    # Writes
    # ----------------------------------------------------------------------

    def _path_for_new(self, name: str) -> Path:
        # a file already backing another workflow, or one that failed to
        # load, is never reused; the stem gets a numeric suffix instead
        taken = {p for n, p in self._paths.items() if n != name} | set(self._errors)
        stem = file_stem(name)
        path = self.root / f"{stem}.yml"
        counter = 2
        while path in taken:
            path = self.root / f"{stem}-{counter}.yml"
            counter += 1
        return path

    def create(self, name: str, definition: WorkflowDefinition) -> WorkflowDefinition:
        """
        Persist `definition` under `name` and register it, replacing any
        workflow of the same name. The file is named after `name`, with a
        numeric suffix when that file already belongs to another workflow.
        File I/O errors propagate.
        """
        if definition.name != name:
            definition = replace(definition, name=name)

        # Round-trip through the document parser so a definition built in code
        # gets exactly the validation a file on disk gets (cycles, refs, XOR).
        text = dump_document(definition)
        registered = parse_yaml(text, source=f"<create {name}>")

        with self._lock:
            self.root.mkdir(parents=True, exist_ok=True)
            old_path = self._paths.get(name)
            path = self._path_for_new(name)
            path.write_text(text, encoding="utf-8")
            if old_path is not None and old_path != path and old_path.exists():
                old_path.unlink()

            self._workflows[name] = registered
            self._paths[name] = path

        logger.info("Created workflow: %s (%s)", name, path.name)
        return registered

    def delete(self, name: str) -> bool:
        """Remove the backing file and the in-memory entry. False if unknown."""
        with self._lock:
            if name not in self._workflows:
                logger.warning("Workflow not found: %s", name)
                return False

            path = self._paths.get(name) or self.root / f"{file_stem(name)}.yml"
            shared = [n for n, p in self._paths.items() if n != name and p == path]
            if shared:
                logger.warning("Keeping %s: it also backs workflow '%s'", path.name, shared[0])
            else:
                try:
                    path.unlink()
                except FileNotFoundError:
                    logger.warning("Backing file for workflow '%s' was already gone: %s", name, path)

            del self._workflows[name]
            self._paths.pop(name, None)

        logger.info("Deleted workflow: %s", name)
        return True
