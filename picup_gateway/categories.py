from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, Iterator, Mapping, Optional


@dataclass(frozen=True)
class CategoryConfig:
    name: str
    allow_non_image_content: bool = False

    def accepts(self, content_type: Optional[str]) -> bool:
        """Whether a part declared with ``content_type`` may be stored here."""
        if self.allow_non_image_content:
            return True
        return bool(content_type) and "image" in content_type.lower()


class CategoryTable(Mapping[str, CategoryConfig]):
    """Read-only category name -> policy table, built once at startup."""

    def __init__(self, categories: Mapping[str, CategoryConfig]):
        self._categories = MappingProxyType(dict(categories))

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "CategoryTable":
        """Build from the ``[server.categories]`` table of the config file."""
        categories: Dict[str, CategoryConfig] = {}
        for name, options in raw.items():
            options = options or {}
            if not isinstance(options, Mapping):
                raise ValueError(f"category '{name}' must be a table")
            categories[name] = CategoryConfig(
                name=name,
                allow_non_image_content=bool(options.get("allow_all_files", False)),
            )
        return cls(categories)

    def __getitem__(self, name: str) -> CategoryConfig:
        return self._categories[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._categories)

    def __len__(self) -> int:
        return len(self._categories)

    def __repr__(self) -> str:
        return f"CategoryTable({list(self._categories)!r})"
