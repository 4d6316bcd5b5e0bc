"""Abstract tool interface for model tool use."""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any


class Tool(ABC):
    """Base class for all model-callable tools."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique tool name sent to the provider."""
        ...

    @property
    @abstractmethod
    def description(self) -> str:
        ...

    @property
    @abstractmethod
    def input_schema(self) -> dict[str, Any]:
        """JSON Schema dict describing accepted parameters."""
        ...

    @property
    def label(self) -> str:
        """Short progress label shown while the tool runs."""
        return self.name.replace("_", " ").capitalize()

    @abstractmethod
    async def execute(self, **kwargs: Any) -> str | dict[str, Any]:
        """Run the tool. Dict results are serialized to JSON by the registry."""
        ...

    def to_definition(self) -> dict[str, Any]:
        """Serialize to the provider-neutral tool definition."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }


class ProjectTool(Tool):
    """A tool whose paths are confined to the project root."""

    def __init__(self, project_root: str | Path):
        self._root = Path(project_root).resolve()

    def resolve(self, rel_path: str) -> Path:
        """Resolve a project-relative path; raises ValueError if it escapes the root."""
        path = (self._root / (rel_path or ".")).resolve()
        if path != self._root and self._root not in path.parents:
            raise ValueError(f"path '{rel_path}' is outside the project root")
        return path

    def relative(self, path: Path) -> str:
        return path.relative_to(self._root).as_posix() or "."
