"""
Workflow definition storage.

Definitions are read from DuckDB once at startup and kept in memory. An
administrative ``replace`` validates the new definition, overwrites the
stored row and swaps the cached copy; there is no version history.
Callers always receive a fresh ``WorkflowGraph`` built from the cached
document, so a run never observes a later replacement.
"""

import copy
import duckdb
import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from config import WORKFLOW_DB_PATH, WORKFLOWS_DIR
from workflow_engine import WorkflowExecutor, WorkflowGraph

logger = logging.getLogger(__name__)


class WorkflowStore:
    """Named workflow definitions persisted in DuckDB."""

    def __init__(self, db_path: Union[str, Path, None] = None):
        self.db_path = Path(db_path or WORKFLOW_DB_PATH)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._definitions: Dict[str, Dict[str, Any]] = {}
        self._init_database()
        self._load_all()

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        return duckdb.connect(str(self.db_path), read_only=False)

    def _init_database(self) -> None:
        conn = self._get_connection()
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS workflows (
                    name TEXT PRIMARY KEY,
                    definition_json TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.commit()
        finally:
            conn.close()

    def _load_all(self) -> None:
        conn = self._get_connection()
        try:
            rows = conn.execute("SELECT name, definition_json FROM workflows").fetchall()
        finally:
            conn.close()

        with self._lock:
            self._definitions = {name: json.loads(raw) for name, raw in rows}
        logger.info("Loaded %d workflow definitions from %s", len(rows), self.db_path)

    def names(self) -> List[str]:
        with self._lock:
            return sorted(self._definitions)

    def get_raw(self, name: str) -> Dict[str, Any]:
        """Stored document for ``name``; LookupError if unknown."""
        with self._lock:
            if name not in self._definitions:
                raise LookupError(f"Workflow not found: {name}")
            return copy.deepcopy(self._definitions[name])

    def get(self, name: str) -> WorkflowGraph:
        return WorkflowGraph.from_dict(self.get_raw(name))

    def replace(self, name: str, definition: Dict[str, Any]) -> WorkflowGraph:
        """
        Validate and store ``definition`` under ``name``, replacing any previous one.

        Raises StructuralError (a ValueError) when the definition is malformed;
        nothing is written in that case.
        """
        graph = WorkflowGraph.from_dict(definition)
        WorkflowExecutor(graph).check()

        document = graph.to_dict()
        conn = self._get_connection()
        try:
            conn.execute("""
                INSERT OR REPLACE INTO workflows (name, definition_json, updated_at)
                VALUES (?, ?, ?)
            """, (name, json.dumps(document), datetime.now(timezone.utc).isoformat()))
            conn.commit()
        finally:
            conn.close()

        with self._lock:
            replaced = name in self._definitions
            self._definitions[name] = document
        logger.info(
            "%s workflow %s (%d nodes, %d edges)",
            "Replaced" if replaced else "Stored", name, len(graph.nodes), len(graph.edges),
        )
        return graph

    def seed_from_file(self, path: Union[str, Path], name: Optional[str] = None, overwrite: bool = False) -> bool:
        """
        Store a JSON definition file unless ``name`` already exists.

        Returns True when the file was stored.
        """
        path = Path(path)
        name = name or path.stem
        with self._lock:
            exists = name in self._definitions
        if exists and not overwrite:
            return False

        with open(path, 'r', encoding='utf-8') as f:
            definition = json.load(f)
        self.replace(name, definition)
        return True

    def seed_directory(self, directory: Union[str, Path, None] = None) -> int:
        """Seed every ``*.json`` file in ``directory``; returns how many were stored."""
        directory = Path(directory or WORKFLOWS_DIR)
        if not directory.is_dir():
            return 0
        return sum(1 for path in sorted(directory.glob('*.json')) if self.seed_from_file(path))
