"""
Saved queries — ``.kql`` files under ``<workspace>/<queriesFolder>/``.

Each file starts with ``// Key: value`` comment headers followed by the
query text:

    // Query: Slow requests
    // Category: Performance
    // Purpose: Find requests over 5s
    // Created: 2024-05-01
    // Tags: latency, requests

    requests | where duration > 5000

The first sub-folder is the query's category ("Root" for top-level files).

Usage:
    from insights_query.queries import SavedQueriesStore

    store = SavedQueriesStore(cfg.workspace_path, cfg.queries_folder)
    store.save("Slow requests", kql, tags=["latency"])
    hits = store.search(["latency"])
"""

from __future__ import annotations

import logging
import re
from datetime import date
from pathlib import Path

from pydantic import BaseModel

logger = logging.getLogger("insights-query.queries")

ROOT_CATEGORY = "Root"

_HEADERS = {
    "Query:": "name",
    "Category:": "category",
    "Purpose:": "purpose",
    "Use case:": "use_case",
    "Created:": "created",
    "Tags:": "tags",
}

# Relevance weight per matching field, per search term
_WEIGHTS = {
    "name": 10,
    "tags": 8,
    "file_name": 7,
    "purpose": 5,
    "use_case": 5,
    "kql": 3,
}


class SavedQuery(BaseModel):
    file_path: str
    file_name: str
    category: str
    name: str
    purpose: str = ""
    use_case: str = ""
    created: str = ""
    tags: list[str] = []
    kql: str


def _safe_name(value: str) -> str:
    return re.sub(r"\s+", " ", re.sub(r"[^a-z0-9\s-]", "", value, flags=re.IGNORECASE).strip())


def score(query: SavedQuery, terms: list[str]) -> int:
    total = 0
    for term in terms:
        needle = term.lower()
        if needle in query.name.lower():
            total += _WEIGHTS["name"]
        if needle in query.purpose.lower():
            total += _WEIGHTS["purpose"]
        if needle in query.use_case.lower():
            total += _WEIGHTS["use_case"]
        if any(needle in tag.lower() for tag in query.tags):
            total += _WEIGHTS["tags"]
        if needle in query.file_name.lower():
            total += _WEIGHTS["file_name"]
        if needle in query.kql.lower():
            total += _WEIGHTS["kql"]
    return total


class SavedQueriesStore:
    def __init__(self, workspace_path: str | Path, queries_folder: str = "queries"):
        self.queries_dir = Path(workspace_path) / queries_folder

    def _parse(self, path: Path) -> SavedQuery | None:
        try:
            lines = path.read_text(encoding="utf-8").splitlines()
        except OSError as e:
            logger.warning("Failed to read query file %s: %s", path, e)
            return None

        meta: dict[str, object] = {}
        body_start = len(lines)
        for i, raw in enumerate(lines):
            line = raw.strip()
            if not line.startswith("//"):
                body_start = i
                break
            comment = line[2:].strip()
            for prefix, key in _HEADERS.items():
                if comment.startswith(prefix):
                    value = comment[len(prefix):].strip()
                    if key == "tags":
                        meta[key] = [t.strip() for t in value.split(",") if t.strip()]
                    else:
                        meta[key] = value
                    break

        kql = "\n".join(lines[body_start:]).strip()
        if not kql:
            logger.warning("No KQL found in %s", path)
            return None

        relative = path.parent.relative_to(self.queries_dir)
        category = relative.parts[0] if relative.parts else ROOT_CATEGORY
        return SavedQuery(
            file_path=str(path),
            file_name=path.name,
            category=category,
            name=meta.get("name") or path.name,
            purpose=meta.get("purpose", ""),
            use_case=meta.get("use_case", ""),
            created=meta.get("created", ""),
            tags=meta.get("tags", []),
            kql=kql,
        )

    def list_all(self) -> list[SavedQuery]:
        if not self.queries_dir.is_dir():
            return []
        queries = [q for q in map(self._parse, sorted(self.queries_dir.rglob("*.kql"))) if q]
        logger.info("Loaded %d saved queries from %s", len(queries), self.queries_dir)
        return queries

    def search(self, terms: list[str]) -> list[SavedQuery]:
        """Queries matching any term, highest weighted score first."""
        queries = self.list_all()
        terms = [t for t in terms if t.strip()]
        if not terms:
            return queries
        scored = [(score(q, terms), q) for q in queries]
        matches = [q for s, q in sorted(scored, key=lambda pair: -pair[0]) if s > 0]
        logger.info("Found %d queries matching: %s", len(matches), ", ".join(terms))
        return matches

    def categories(self) -> list[str]:
        if not self.queries_dir.is_dir():
            return []
        return sorted(p.name for p in self.queries_dir.iterdir() if p.is_dir())

    def save(
        self,
        name: str,
        kql: str,
        purpose: str | None = None,
        use_case: str | None = None,
        tags: list[str] | None = None,
        category: str | None = None,
        overwrite: bool = False,
    ) -> Path:
        """Write a new ``.kql`` file and return its path.

        Raises:
            ValueError: ``name`` has no characters usable in a file name.
            FileExistsError: a query with the same file name already exists in
                the category and ``overwrite`` is false.
        """
        file_stem = _safe_name(name)
        if not file_stem:
            raise ValueError(f"Query name {name!r} has no usable characters for a file name")

        target_dir = self.queries_dir
        category = _safe_name(category) if category else ""
        if category:
            target_dir = target_dir / category
        target_dir.mkdir(parents=True, exist_ok=True)

        lines = [f"// Query: {name}"]
        if category:
            lines.append(f"// Category: {category}")
        if purpose:
            lines.append(f"// Purpose: {purpose}")
        if use_case:
            lines.append(f"// Use case: {use_case}")
        lines.append(f"// Created: {date.today().isoformat()}")
        if tags:
            lines.append(f"// Tags: {', '.join(tags)}")
        lines += ["", kql.strip(), ""]

        path = target_dir / f"{file_stem}.kql"
        if path.exists() and not overwrite:
            raise FileExistsError(f"Saved query already exists: {path}")
        path.write_text("\n".join(lines), encoding="utf-8")
        logger.info("Saved query to: %s", path)
        return path
