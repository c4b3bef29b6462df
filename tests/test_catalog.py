from vaultlens.catalog import CATALOG, TOOL_ROUTES, anthropic_tools, openai_tools
from vaultlens.types import Backend


def test_catalog_names_are_unique():
    names = [spec.name for spec in CATALOG]
    assert len(names) == len(set(names)) == 29


def test_backend_counts():
    by_backend = {}
    for spec in CATALOG:
        by_backend[spec.backend] = by_backend.get(spec.backend, 0) + 1

    assert by_backend == {Backend.AUDIT: 4, Backend.VAULT: 24, Backend.SYSTEM: 1}


def test_only_audit_tools_are_renamed():
    renamed = {name: target for name, (_, target) in TOOL_ROUTES.items() if name != target}

    assert renamed == {
        "search_audit_events": "audit.search_events",
        "aggregate_audit_events": "audit.aggregate",
        "trace_request": "audit.trace",
        "get_event_details": "audit.get_event_details",
    }


def test_required_fields_are_declared():
    for spec in CATALOG:
        for key in spec.required:
            assert key in spec.properties, f"{spec.name}: {key}"


def test_both_renderings_share_schemas():
    anthropic = {tool["name"]: tool["input_schema"] for tool in anthropic_tools()}
    openai = {tool["function"]["name"]: tool["function"]["parameters"] for tool in openai_tools()}

    assert anthropic == openai
    assert anthropic["suggest_documentation"]["required"] == ["title", "url", "description"]
