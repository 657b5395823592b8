from clawbridge.transports.cli_adapter import CliAdapter, CliConfig, CliJsonResult
from clawbridge.transports.http_client import (
    GatewayHttpClient,
    HttpToolClient,
    query_gateway_info_via_http,
    test_http_connectivity,
)
from clawbridge.transports.socket_client import (
    GatewaySocketSession,
    ainvoke_via_socket_any,
    aquery_gateway_info_via_socket,
    invoke_via_socket_any,
    query_gateway_info_via_socket,
    test_socket_connectivity,
)

__all__ = [
    "CliAdapter",
    "CliConfig",
    "CliJsonResult",
    "GatewayHttpClient",
    "HttpToolClient",
    "query_gateway_info_via_http",
    "test_http_connectivity",
    "GatewaySocketSession",
    "ainvoke_via_socket_any",
    "aquery_gateway_info_via_socket",
    "invoke_via_socket_any",
    "query_gateway_info_via_socket",
    "test_socket_connectivity",
]
