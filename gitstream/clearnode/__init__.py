"""
gitstream.clearnode
===================

Settlement session client for the ClearNode state-channel network:
authenticated WebSocket client, process-wide registry, and helpers that map
tier allocations onto an application session.
"""

from .client import ClearNodeClient
from .registry import ClearNodeRegistry, client_from_settings
from .signer import EthRawSigner, RawSigner
from .streaming import (build_app_session, create_streaming_session,
                        get_session_balance)
from .types import (AppDefinition, AppSession, Channel, ConnectionState,
                    ConnectionStatus, LedgerBalance, SessionAllocation)

__all__ = [
    "AppDefinition",
    "AppSession",
    "Channel",
    "ClearNodeClient",
    "ClearNodeRegistry",
    "ConnectionState",
    "ConnectionStatus",
    "EthRawSigner",
    "LedgerBalance",
    "RawSigner",
    "SessionAllocation",
    "build_app_session",
    "client_from_settings",
    "create_streaming_session",
    "get_session_balance",
]
