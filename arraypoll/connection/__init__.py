"""
Connection utilities for storage console APIs: unary HTTP transport and the
correlated WebSocket RPC channel.
"""

from arraypoll.connection.rpc_channel import (
    ChannelState,
    CorrelationIdAllocator,
    PendingCall,
    RpcChannel,
    RpcRequest,
)
from arraypoll.connection.transport import TransportClient, TransportResponse

__all__ = [
    'ChannelState',
    'CorrelationIdAllocator',
    'PendingCall',
    'RpcChannel',
    'RpcRequest',
    'TransportClient',
    'TransportResponse',
]
