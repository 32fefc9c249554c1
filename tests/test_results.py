"""Tests for payload classification and the ToolResult wire form."""

from sidecar.results import (
    CatalogEntry,
    CatalogPayload,
    EntryListPayload,
    FileEntry,
    ListingPayload,
    StructuredPayload,
    TextPayload,
    ToolResult,
    payload_from_data,
    payload_to_data,
)


class TestPayloadFromData:
    def test_string_is_text(self):
        assert payload_from_data("hello") == TextPayload("hello")

    def test_list_of_strings_is_listing(self):
        assert payload_from_data(["a", "b"]) == ListingPayload(["a", "b"])

    def test_empty_list(self):
        assert payload_from_data([]) == ListingPayload([])
        assert payload_from_data([], is_tool_list=True) == CatalogPayload([])
        assert payload_from_data([], is_structured=True) == EntryListPayload([])

    def test_catalog_items(self):
        payload = payload_from_data([
            {"server": "fs", "name": "read_file", "description": "Read"},
            {"server": "internal", "name": "list", "inputSchema": {"type": "object"}},
        ])
        assert isinstance(payload, CatalogPayload)
        assert payload.entries[0] == CatalogEntry("fs", "read_file", "Read")
        assert payload.entries[1].input_schema == {"type": "object"}
        assert payload.servers == ["fs", "internal"]

    def test_file_entries(self):
        payload = payload_from_data([{"name": "src", "isDirectory": True}])
        assert payload == EntryListPayload([FileEntry("src", True, "src")])

    def test_mixed_list_is_structured(self):
        data = ["a", {"name": "b", "isDirectory": False}]
        assert payload_from_data(data) == StructuredPayload(data)

    def test_mapping_and_scalars_are_structured(self):
        assert payload_from_data({"a": 1}) == StructuredPayload({"a": 1})
        assert payload_from_data(3) == StructuredPayload(3)
        assert payload_from_data(None) == StructuredPayload(None)

    def test_data_round_trip_for_catalog(self):
        data = [{"server": "fs", "name": "read_file", "description": "Read"}]
        assert payload_to_data(payload_from_data(data)) == data


class TestToolResult:
    def test_success_wire_form(self):
        result = ToolResult.ok(CatalogPayload([CatalogEntry("internal", "list")]), is_tool_list=True)
        assert result.to_dict() == {
            "success": True,
            "data": [{"server": "internal", "name": "list", "description": ""}],
            "isToolList": True,
        }

    def test_failure_wire_form(self):
        assert ToolResult.failure("boom").to_dict() == {"success": False, "data": None, "error": "boom"}

    def test_from_dict_success(self):
        result = ToolResult.from_dict({"success": True, "data": ["fs"], "isStructured": True})
        assert result.success
        assert result.payload == ListingPayload(["fs"])
        assert result.is_structured

    def test_from_dict_failure_defaults_message(self):
        result = ToolResult.from_dict({"success": False})
        assert not result.success
        assert result.error == "Unknown error"

    def test_from_dict_empty_tool_list(self):
        result = ToolResult.from_dict({"success": True, "data": [], "isToolList": True})
        assert result.payload == CatalogPayload([])
        assert result.is_tool_list

    def test_from_dict_empty_structured_list_is_entry_list(self):
        result = ToolResult.from_dict({"success": True, "data": [], "isStructured": True})
        assert result.payload == EntryListPayload([])
        assert result.is_structured
