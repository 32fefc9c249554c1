"""
Tool results and their payload variants.

Every call returns a ToolResult whose payload is one of a closed set of
variants. Untyped JSON (from a provider fallback or the HTTP wire) is
classified into a variant once, by ``payload_from_data``; formatting code
dispatches on the variant type and never re-inspects raw shapes.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union


@dataclass(frozen=True)
class TextPayload:
    text: str


@dataclass(frozen=True)
class ListingPayload:
    items: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class CatalogEntry:
    server: str
    name: str
    description: str = ""
    input_schema: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "server": self.server,
            "name": self.name,
            "description": self.description,
        }
        if self.input_schema is not None:
            data["inputSchema"] = self.input_schema
        return data


@dataclass(frozen=True)
class CatalogPayload:
    entries: List[CatalogEntry] = field(default_factory=list)

    @property
    def servers(self) -> List[str]:
        """Distinct server ids in first-appearance order."""
        seen: List[str] = []
        for entry in self.entries:
            if entry.server not in seen:
                seen.append(entry.server)
        return seen


@dataclass(frozen=True)
class FileEntry:
    name: str
    is_directory: bool
    path: str

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "isDirectory": self.is_directory, "path": self.path}


@dataclass(frozen=True)
class EntryListPayload:
    entries: List[FileEntry] = field(default_factory=list)


@dataclass(frozen=True)
class StructuredPayload:
    data: Any


Payload = Union[TextPayload, ListingPayload, CatalogPayload, EntryListPayload, StructuredPayload]


def payload_to_data(payload: Optional[Payload]) -> Any:
    """Return the JSON form of a payload."""
    if payload is None:
        return None
    if isinstance(payload, TextPayload):
        return payload.text
    if isinstance(payload, ListingPayload):
        return list(payload.items)
    if isinstance(payload, CatalogPayload):
        return [entry.to_dict() for entry in payload.entries]
    if isinstance(payload, EntryListPayload):
        return [entry.to_dict() for entry in payload.entries]
    if isinstance(payload, StructuredPayload):
        return payload.data
    raise TypeError(f"Unknown payload type: {type(payload).__name__}")


def _is_catalog_item(item: Any) -> bool:
    return isinstance(item, dict) and isinstance(item.get("server"), str) and isinstance(item.get("name"), str)


def _is_file_item(item: Any) -> bool:
    return isinstance(item, dict) and isinstance(item.get("name"), str) and "isDirectory" in item


def payload_from_data(data: Any, is_tool_list: bool = False, is_structured: bool = False) -> Payload:
    """Classify untyped JSON into a payload variant.

    Strings become text; a list of strings is a listing; a list of
    ``{server, name}`` objects is a catalog; a list of ``{name, isDirectory}``
    objects is an entry list. Everything else is kept as structured data.
    An empty list follows the hints: a catalog for tool lists, an empty entry
    list for structured results, otherwise an empty listing.
    """
    if isinstance(data, str):
        return TextPayload(data)

    if isinstance(data, list):
        if not data and is_tool_list:
            return CatalogPayload([])
        if not data and is_structured:
            return EntryListPayload([])
        if all(isinstance(item, str) for item in data):
            return ListingPayload(list(data))
        if all(_is_catalog_item(item) for item in data):
            return CatalogPayload([
                CatalogEntry(
                    server=item["server"],
                    name=item["name"],
                    description=item.get("description") or "",
                    input_schema=item.get("inputSchema"),
                )
                for item in data
            ])
        if all(_is_file_item(item) for item in data):
            return EntryListPayload([
                FileEntry(
                    name=item["name"],
                    is_directory=bool(item["isDirectory"]),
                    path=item.get("path") or item["name"],
                )
                for item in data
            ])

    return StructuredPayload(data)


@dataclass(frozen=True)
class ToolResult:
    """Outcome of one tool call.

    ``success=False`` means ``payload`` is irrelevant and ``error`` is set.
    The hints ``is_tool_list``/``is_structured`` only steer formatting.
    """
    success: bool
    payload: Optional[Payload] = None
    error: Optional[str] = None
    is_tool_list: bool = False
    is_structured: bool = False

    @classmethod
    def ok(cls, payload: Payload, is_tool_list: bool = False, is_structured: bool = False) -> "ToolResult":
        return cls(success=True, payload=payload, is_tool_list=is_tool_list, is_structured=is_structured)

    @classmethod
    def failure(cls, error: str) -> "ToolResult":
        return cls(success=False, error=error)

    @property
    def data(self) -> Any:
        return payload_to_data(self.payload)

    def to_dict(self) -> Dict[str, Any]:
        """Wire form: ``{success, data, error?, isToolList?, isStructured?}``."""
        result: Dict[str, Any] = {"success": self.success, "data": self.data if self.success else None}
        if self.error is not None:
            result["error"] = self.error
        if self.is_tool_list:
            result["isToolList"] = True
        if self.is_structured:
            result["isStructured"] = True
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ToolResult":
        if not data.get("success"):
            return cls.failure(str(data.get("error") or "Unknown error"))
        is_tool_list = bool(data.get("isToolList"))
        is_structured = bool(data.get("isStructured"))
        return cls.ok(
            payload_from_data(data.get("data"), is_tool_list=is_tool_list, is_structured=is_structured),
            is_tool_list=is_tool_list,
            is_structured=is_structured,
        )
