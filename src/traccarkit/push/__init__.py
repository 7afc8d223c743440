"""
Push channel for live Traccar updates.

This module keeps a WebSocket connection to the server's `/api/socket`
endpoint and republishes device, position and event updates on typed
broadcast streams.

Example:
    >>> from traccarkit import TRACCAR, create_pipeline, create_auth_provider
    >>> from traccarkit.push import PipelineSessionBootstrapper, PushChannel
    >>> auth = create_auth_provider()
    >>> pipeline = create_pipeline(auth_provider=auth)
    >>> channel = PushChannel.from_config(
    ...     TRACCAR.config.push,
    ...     bootstrapper=PipelineSessionBootstrapper(pipeline, auth),
    ...     base_url=TRACCAR.config.http.base_url,
    ... )
    >>> with channel:
    ...     channel.positions.subscribe(lambda positions: print(positions))
    ...     channel.connect()
"""

from traccarkit.push._broadcast import Broadcast
from traccarkit.push._channel import ChannelState, PushChannel
from traccarkit.push._frames import PushMessage, PushMessageKind, decode_frame
from traccarkit.push._session import (
    PipelineSessionBootstrapper,
    SessionBootstrapper,
    build_socket_url,
    extract_session_cookie,
)

__all__ = [
    # Main client
    "PushChannel",
    "ChannelState",
    # Streams
    "Broadcast",
    # Frames
    "PushMessage",
    "PushMessageKind",
    "decode_frame",
    # Session
    "SessionBootstrapper",
    "PipelineSessionBootstrapper",
    "build_socket_url",
    "extract_session_cookie",
]
