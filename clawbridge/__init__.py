from clawbridge.bridge import GatewayBridge
from clawbridge.core.errors import (
    AuthenticationFailure,
    EndpointNotFound,
    ExhaustedFallback,
    GatewayError,
    GatewayRequestError,
    MalformedResponse,
    OriginRejected,
    PolicyDenied,
    TransportUnavailable,
)
from clawbridge.core.types import (
    AgentsProbeResult,
    ConnectionConfig,
    ConnectivityResult,
    CreateAgentResult,
    DatasetResult,
    Diagnostics,
    GatewayInfo,
)
from clawbridge.datasets import DATASET_PRESETS, fetch_named_dataset
from clawbridge.diagnostic import DiagnosticReport, run_full_diagnostic
from clawbridge.discovery import check_gateway_connection, discover_gateway_info

__all__ = [
    "GatewayBridge",
    "AuthenticationFailure",
    "EndpointNotFound",
    "ExhaustedFallback",
    "GatewayError",
    "GatewayRequestError",
    "MalformedResponse",
    "OriginRejected",
    "PolicyDenied",
    "TransportUnavailable",
    "AgentsProbeResult",
    "ConnectionConfig",
    "ConnectivityResult",
    "CreateAgentResult",
    "DatasetResult",
    "Diagnostics",
    "GatewayInfo",
    "DATASET_PRESETS",
    "fetch_named_dataset",
    "DiagnosticReport",
    "run_full_diagnostic",
    "check_gateway_connection",
    "discover_gateway_info",
]
