#!/usr/bin/env python3
# CUI // SP-CTI
"""Rule-document catalog.

Documents are addressed by slash-separated names such as "payments/stripe".
Lookups silently skip names the catalog does not hold; the caller decides
what an empty result means.
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Iterable, List, Optional

logger = logging.getLogger("patterngate.catalog")


class PatternCatalog(ABC):
    """Maps document names to rule text."""

    @abstractmethod
    def get_documents(self, names: Iterable[str]) -> Dict[str, str]:
        """Return {name: text} for every requested name that exists."""

    @abstractmethod
    def list_documents(self) -> List[str]:
        """Return every document name, sorted."""


class InMemoryPatternCatalog(PatternCatalog):

    def __init__(self, documents: Optional[Dict[str, str]] = None):
        self._documents = dict(documents or {})

    def get_documents(self, names):
        return {n: self._documents[n] for n in names if n in self._documents}

    def list_documents(self):
        return sorted(self._documents)


class DirectoryPatternCatalog(PatternCatalog):
    """Reads ``<root>/<name>.md``. Names may not escape the root directory."""

    def __init__(self, root):
        self.root = Path(root).resolve()

    def _path_for(self, name: str) -> Optional[Path]:
        candidate = (self.root / f"{name}.md").resolve()
        if self.root not in candidate.parents:
            logger.warning("Rejected document name outside catalog root: %s", name)
            return None
        return candidate

    def get_documents(self, names):
        found = {}
        for name in names:
            path = self._path_for(name)
            if path is None or not path.is_file():
                continue
            found[name] = path.read_text(encoding="utf-8")
        return found

    def list_documents(self):
        if not self.root.is_dir():
            return []
        return sorted(
            p.relative_to(self.root).with_suffix("").as_posix()
            for p in self.root.rglob("*.md")
        )
