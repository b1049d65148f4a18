"""Work-item ledger access: the ``rl`` client, description fields, routing."""

from horde.ledger.client import (
    CLOSED_STATUSES,
    LedgerClient,
    compare_versions,
    is_closed,
    parse_version,
    render_version,
)
from horde.ledger.fields import format_fields, parse_fields, set_fields, split_list
from horde.ledger.routes import (
    ExternalRef,
    LedgerRouter,
    LocalRef,
    Route,
    append_route,
    hq_route,
    load_routes,
    parse_ref,
    resolve_route,
)

__all__ = [
    "CLOSED_STATUSES",
    "ExternalRef",
    "LedgerClient",
    "LedgerRouter",
    "LocalRef",
    "Route",
    "append_route",
    "compare_versions",
    "format_fields",
    "hq_route",
    "is_closed",
    "load_routes",
    "parse_fields",
    "parse_ref",
    "parse_version",
    "render_version",
    "resolve_route",
    "set_fields",
    "split_list",
]
