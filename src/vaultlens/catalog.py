"""
Static tool catalog exposed to the model.

Each entry is declared once with a JSON schema and rendered into both
providers' native tool formats. ``TOOL_ROUTES`` is the flat
catalog-name -> (backend, server-side name) table used by the adapters.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from vaultlens.types import Backend

__all__ = [
    "ToolSpec",
    "CATALOG",
    "TOOL_ROUTES",
    "anthropic_tools",
    "openai_tools",
]


@dataclass(frozen=True)
class ToolSpec:
    name: str
    backend: Backend
    description: str
    properties: dict[str, Any] = field(default_factory=dict)
    required: tuple[str, ...] = ()
    target: str | None = None  # server-side name when it differs from ``name``

    @property
    def server_name(self) -> str:
        return self.target or self.name

    @property
    def schema(self) -> dict[str, Any]:
        schema: dict[str, Any] = {"type": "object", "properties": self.properties}
        if self.required:
            schema["required"] = list(self.required)
        return schema


_NAMESPACE = {
    "type": "string",
    "description": 'Namespace path (e.g. "admin/"). If not specified, uses the root namespace context.',
}


def _str(description: str, **extra: Any) -> dict[str, Any]:
    return {"type": "string", "description": description, **extra}


_AUDIT_FILTERS: dict[str, Any] = {
    "namespace": _str("Filter by Vault namespace"),
    "operation": _str("Filter by operation type (e.g. read, write, update)"),
    "mount_type": _str("Filter by mount type (e.g. pki, kv, approle, oidc)"),
    "mount_class": _str("Filter by mount class (e.g. auth, secret, system)"),
    "status": _str("Filter by status", enum=["ok", "error"]),
}


CATALOG: tuple[ToolSpec, ...] = (
    # --- audit log server ----------------------------------------------------
    ToolSpec(
        name="search_audit_events",
        target="audit.search_events",
        backend=Backend.AUDIT,
        description=(
            "Search Vault audit events by labels and filters. Returns a summary "
            "with top_actors, event categories, patterns and sample events."
        ),
        properties={
            "limit": {"type": "number", "description": "Max number of events to return (1-500, default 100)"},
            **_AUDIT_FILTERS,
            "start_rfc3339": _str("Start time (RFC3339, default now-15m)"),
            "end_rfc3339": _str("End time (RFC3339, default now)"),
        },
    ),
    ToolSpec(
        name="aggregate_audit_events",
        target="audit.aggregate",
        backend=Backend.AUDIT,
        description="Count audit events grouped by a dimension",
        properties={
            "by": _str(
                "Group by this dimension",
                enum=[
                    "vault_namespace",
                    "vault_operation",
                    "vault_mount_type",
                    "vault_mount_class",
                    "vault_status",
                ],
            ),
            **_AUDIT_FILTERS,
        },
        required=("by",),
    ),
    ToolSpec(
        name="trace_request",
        target="audit.trace",
        backend=Backend.AUDIT,
        description="Trace all audit events for a specific request ID",
        properties={
            "request_id": _str("The Vault request ID to trace"),
            "limit": {"type": "number", "description": "Max number of events to return (default 100)"},
        },
        required=("request_id",),
    ),
    ToolSpec(
        name="get_event_details",
        target="audit.get_event_details",
        backend=Backend.AUDIT,
        description=(
            "Get full details for one audit event by request ID, including request "
            "path, role name, entity ID, remote address and the raw audit log JSON."
        ),
        properties={"request_id": _str("The Vault request ID to retrieve")},
        required=("request_id",),
    ),
    # --- vault API server ----------------------------------------------------
    ToolSpec(
        name="list_namespaces",
        backend=Backend.VAULT,
        description="List child namespaces within a Vault Enterprise namespace.",
        properties={"namespace": _NAMESPACE},
    ),
    ToolSpec(
        name="list_mounts",
        backend=Backend.VAULT,
        description="List all mounted secrets engines and auth methods.",
        properties={"namespace": _NAMESPACE},
    ),
    ToolSpec(
        name="list_secrets",
        backend=Backend.VAULT,
        description="List secrets at a path in a KV secrets engine.",
        properties={
            "mount": _str('Mount path where secrets are stored (e.g. "secret", "kv")'),
            "path": _str('Path within the mount to list (empty string for root)'),
            "namespace": _NAMESPACE,
        },
        required=("mount",),
    ),
    ToolSpec(
        name="read_secret",
        backend=Backend.VAULT,
        description="Read a secret from a KV secrets engine.",
        properties={
            "mount": _str("Mount path where the secret is stored"),
            "path": _str('Path to the secret (e.g. "app1/db-credentials")'),
            "namespace": _NAMESPACE,
        },
        required=("mount", "path"),
    ),
    ToolSpec(
        name="list_policies",
        backend=Backend.VAULT,
        description="List all ACL policies in a namespace.",
        properties={"namespace": _NAMESPACE},
    ),
    ToolSpec(
        name="read_policy",
        backend=Backend.VAULT,
        description="Read the HCL rules of a Vault ACL policy.",
        properties={"name": _str("Policy name"), "namespace": _NAMESPACE},
        required=("name",),
    ),
    ToolSpec(
        name="list_auth_methods",
        backend=Backend.VAULT,
        description="List all enabled authentication methods.",
        properties={"namespace": _NAMESPACE},
    ),
    ToolSpec(
        name="read_auth_method",
        backend=Backend.VAULT,
        description="Read configuration of one authentication method.",
        properties={
            "path": _str('Auth method mount path including trailing slash (e.g. "approle/")'),
            "namespace": _NAMESPACE,
        },
        required=("path",),
    ),
    ToolSpec(
        name="list_auth_roles",
        backend=Backend.VAULT,
        description=(
            "List roles configured in an auth method. For userpass use "
            'path_suffix="users", for ldap "groups" or "users".'
        ),
        properties={
            "mount": _str('Auth mount path without trailing slash (e.g. "approle")'),
            "path_suffix": _str('Path suffix for listing roles, defaults to "role"'),
            "namespace": _NAMESPACE,
        },
        required=("mount",),
    ),
    ToolSpec(
        name="read_auth_role",
        backend=Backend.VAULT,
        description="Read a role in an auth method, including token_policies.",
        properties={
            "mount": _str("Auth mount path without trailing slash"),
            "role_name": _str("Name of the role to read"),
            "path_suffix": _str('Path suffix for reading roles, defaults to "role"'),
            "namespace": _NAMESPACE,
        },
        required=("mount", "role_name"),
    ),
    ToolSpec(
        name="analyze_secret_access",
        backend=Backend.VAULT,
        description=(
            "Analyze which auth roles can access a Vault API path, with policy "
            "template evaluation and optional KV v2 path expansion."
        ),
        properties={
            "target_path": _str('Vault API path to analyze (e.g. "kv/tenant-2/secret")'),
            "required_capabilities": _str("Comma-separated capabilities required on target_path"),
            "include_kv_v2_paths": {"type": "boolean", "description": "Expand KV v2 data/metadata paths"},
            "namespace": _NAMESPACE,
            "template_values": {"type": "object", "description": "Values used to resolve policy template tokens"},
        },
        required=("target_path",),
    ),
    ToolSpec(
        name="list_entities",
        backend=Backend.VAULT,
        description="List identity entities by id or name.",
        properties={
            "list_by": _str('List by "id" (default) or "name"', enum=["id", "name"]),
            "namespace": _NAMESPACE,
        },
    ),
    ToolSpec(
        name="read_entity",
        backend=Backend.VAULT,
        description="Read an identity entity by id or name, including metadata and aliases.",
        properties={
            "entity_id": _str("Entity ID. Provide either entity_id or entity_name."),
            "entity_name": _str("Entity name. Provide either entity_id or entity_name."),
            "namespace": _NAMESPACE,
        },
    ),
    ToolSpec(
        name="list_entity_aliases",
        backend=Backend.VAULT,
        description="List identity entity aliases by id.",
        properties={"namespace": _NAMESPACE},
    ),
    ToolSpec(
        name="read_entity_alias",
        backend=Backend.VAULT,
        description="Read an identity alias, including metadata and mount accessor.",
        properties={"alias_id": _str("Entity alias ID"), "namespace": _NAMESPACE},
        required=("alias_id",),
    ),
    ToolSpec(
        name="lookup_self",
        backend=Backend.VAULT,
        description="Look up the current token (policies, entity_id, display_name, TTL, metadata).",
        properties={"namespace": _NAMESPACE},
    ),
    ToolSpec(
        name="read_entity_self",
        backend=Backend.VAULT,
        description="Read the identity entity behind the current token.",
        properties={"namespace": _NAMESPACE},
    ),
    ToolSpec(
        name="introspect_self",
        backend=Backend.VAULT,
        description="Token lookup plus identity entity in one call; use before policy-template analysis.",
        properties={"namespace": _NAMESPACE},
    ),
    ToolSpec(
        name="read_replication_status",
        backend=Backend.VAULT,
        description="Performance and DR replication status: modes, connection state, WAL indexes, known secondaries.",
    ),
    ToolSpec(
        name="read_metrics",
        backend=Backend.VAULT,
        description="Read telemetry metrics from sys/metrics.",
    ),
    ToolSpec(
        name="read_host_info",
        backend=Backend.VAULT,
        description="Read host runtime details from sys/host-info (OS, CPU, memory).",
    ),
    ToolSpec(
        name="list_leases",
        backend=Backend.VAULT,
        description="List leases under a prefix. Omit prefix for top-level lease paths.",
        properties={"prefix": _str('Lease path prefix (e.g. "database/creds")')},
    ),
    ToolSpec(
        name="read_lease",
        backend=Backend.VAULT,
        description="Read one lease: issue time, expire time, TTL and renewable status.",
        properties={"lease_id": _str("The lease ID")},
        required=("lease_id",),
    ),
    ToolSpec(
        name="read_cluster_health",
        backend=Backend.VAULT,
        description="HA status, raft autopilot state and configuration, and seal backend health.",
    ),
    # --- local ---------------------------------------------------------------
    ToolSpec(
        name="suggest_documentation",
        backend=Backend.SYSTEM,
        description=(
            "Suggest relevant HashiCorp Vault documentation. Suggestions appear in a "
            "separate panel, so do not mention them in the response text."
        ),
        properties={
            "title": _str("Concise title for the documentation page"),
            "url": _str("Full URL of the HashiCorp Vault documentation page"),
            "description": _str("What the page covers and why it is relevant (1-2 sentences)"),
            "context": _str("Optional note on why it is suggested for this query"),
        },
        required=("title", "url", "description"),
    ),
)


TOOL_ROUTES: Mapping[str, tuple[Backend, str]] = {
    spec.name: (spec.backend, spec.server_name) for spec in CATALOG
}


def anthropic_tools(catalog: tuple[ToolSpec, ...] = CATALOG) -> list[dict[str, Any]]:
    """Render the catalog in Anthropic's ``input_schema`` shape."""
    return [
        {"name": spec.name, "description": spec.description, "input_schema": spec.schema}
        for spec in catalog
    ]


def openai_tools(catalog: tuple[ToolSpec, ...] = CATALOG) -> list[dict[str, Any]]:
    """Render the catalog as OpenAI function tools."""
    return [
        {
            "type": "function",
            "function": {
                "name": spec.name,
                "description": spec.description,
                "parameters": spec.schema,
            },
        }
        for spec in catalog
    ]
