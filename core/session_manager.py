"""
Streaming Session Manager

This module binds transport connections to logical animation sessions and
routes every processed frame to the connections that should see it.

A connection is bound between a start event and a stop/disconnect event.
Several connections may share one session id: the one streaming landmarks
drives the animation, the others watch it. Frames are never stored; a
binding only keeps counters and timestamps. A session counts as active
while any of its connections starts or streams, so viewers stay bound as
long as the session they watch is live.

The manager is a synchronous routing layer. It does not perform I/O;
on_frame returns the deliveries and the gateway sends them. All calls are
expected from one event loop, so the maps need no locking.

Usage:
    from core.session_manager import SessionManager
    from core.face_transform import FaceTransformEngine

    manager = SessionManager(FaceTransformEngine())
    manager.on_start("conn_a", "session_001")
    for delivery in manager.on_frame("conn_a", landmarks):
        send(delivery.connection_id, delivery.update)
    manager.on_stop("conn_a")
"""

import itertools
import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from core.face_transform import FaceTransformEngine, RenderTransform

logger = logging.getLogger(__name__)


@dataclass
class SessionBinding:
    """
    Association of one connection with one session.

    Attributes:
        connection_id: Transport-level identity of the connection.
        session_id: Logical session the connection belongs to.
        image_id: Optional reference to an uploaded still image.
        started_at: Unix time the binding was created.
        last_activity: Unix time of this connection's last start or frame.
        frames_processed: Frames this connection has sent while bound.
        last_expression: Expression of the latest frame, if any.
    """

    connection_id: str
    session_id: str
    image_id: Optional[str] = None
    started_at: float = field(default_factory=time.time)
    last_activity: float = field(default_factory=time.time)
    frames_processed: int = 0
    last_expression: Optional[str] = None


@dataclass(frozen=True)
class AnimationUpdate:
    """Payload of one `animation-update` event."""

    session_id: str
    transform: RenderTransform
    expression: str
    timestamp: int
    frame_id: int


@dataclass(frozen=True)
class Delivery:
    """An update addressed to a single connection."""

    connection_id: str
    update: AnimationUpdate


@dataclass
class SessionSummary:
    """Aggregate view of a session across its bound connections."""

    session_id: str
    connection_ids: List[str]
    image_ids: List[str]
    started_at: float
    last_activity: float
    frames_processed: int
    expressions: Dict[str, int]
    last_expression: Optional[str]


class SessionManager:
    """
    Routes landmark frames from connections to the engine and back.

    Maintains a forward map (connection -> binding) and a reverse index
    (session -> connection ids), always updated together.
    """

    def __init__(self, engine: FaceTransformEngine, config: Optional[Dict[str, Any]] = None):
        """
        Initialize the manager.

        Args:
            engine: Engine used for every frame. Owned by the caller.
            config: Configuration dictionary containing (all optional):
                - session_id_prefix: Prefix for generated session ids
                - inactive_timeout_sec: Session idle time before sweep_inactive unbinds
        """
        config = config or {}
        self.engine = engine
        self.session_id_prefix = config.get("session_id_prefix", "session_")
        self.inactive_timeout_sec = config.get("inactive_timeout_sec", 1800)

        self._bindings: Dict[str, SessionBinding] = {}
        self._session_index: Dict[str, Set[str]] = {}
        self._expression_counts: Dict[str, Counter] = {}
        self._session_activity: Dict[str, float] = {}
        self._session_counter = itertools.count(1)
        self._total_frames = 0

    # ------------------------------------------------------------
    # Map maintenance
    # ------------------------------------------------------------

    def _bind(self, binding: SessionBinding) -> None:
        self._bindings[binding.connection_id] = binding
        self._session_index.setdefault(binding.session_id, set()).add(binding.connection_id)
        self._expression_counts.setdefault(binding.session_id, Counter())
        self._touch_session(binding.session_id, binding.last_activity)

    def _unbind(self, connection_id: str) -> Optional[SessionBinding]:
        binding = self._bindings.pop(connection_id, None)
        if binding is None:
            return None

        members = self._session_index.get(binding.session_id)
        if members is not None:
            members.discard(connection_id)
            if not members:
                del self._session_index[binding.session_id]
                self._expression_counts.pop(binding.session_id, None)
                self._session_activity.pop(binding.session_id, None)

        return binding

    def _touch_session(self, session_id: str, now: float) -> None:
        self._session_activity[session_id] = now

    def generate_session_id(self) -> str:
        """Generate a session id like "session_001", skipping ids in use."""
        while True:
            session_id = f"{self.session_id_prefix}{next(self._session_counter):03d}"
            if session_id not in self._session_index:
                return session_id

    # ------------------------------------------------------------
    # Events
    # ------------------------------------------------------------

    def on_start(
        self,
        connection_id: str,
        session_id: Optional[str] = None,
        image_id: Optional[str] = None,
        now: Optional[float] = None,
    ) -> SessionBinding:
        """
        Bind a connection to a session, replacing any previous binding.

        Starting again on the session the connection is already bound to
        keeps the binding and the session's counters; only the image
        reference and activity time are refreshed.

        Args:
            connection_id: Transport-level identity.
            session_id: Session to join. A new id is generated if empty.
            image_id: Optional still image reference (not dereferenced).
            now: Current Unix time (defaults to time.time()).

        Returns:
            The SessionBinding now in effect.
        """
        now = time.time() if now is None else now

        current = self._bindings.get(connection_id)
        if current is not None and session_id and current.session_id == session_id:
            current.image_id = image_id
            current.last_activity = now
            self._touch_session(session_id, now)
            logger.info(f"Animation restarted: connection={connection_id} session={session_id} image={image_id}")
            return current

        self._unbind(connection_id)

        if not session_id:
            session_id = self.generate_session_id()

        binding = SessionBinding(
            connection_id=connection_id,
            session_id=session_id,
            image_id=image_id,
            started_at=now,
            last_activity=now,
        )
        self._bind(binding)

        logger.info(
            f"Animation started: connection={connection_id} session={session_id} "
            f"image={image_id} ({len(self._session_index[session_id])} connection(s))"
        )
        return binding

    def on_frame(self, connection_id: str, landmarks: Any, now: Optional[float] = None) -> List[Delivery]:
        """
        Process one landmark frame from a connection.

        Args:
            connection_id: Connection that sent the frame.
            landmarks: Raw landmark payload or LandmarkFrame.
            now: Current Unix time (defaults to time.time()).

        Returns:
            Deliveries for the originator first, then every other connection
            bound to the same session. Empty if the connection is unbound.
        """
        binding = self._bindings.get(connection_id)
        if binding is None:
            logger.debug(f"Dropping frame from unbound connection {connection_id}")
            return []

        descriptor = self.engine.compute_descriptor(landmarks)
        transform = self.engine.compute_render_transform(descriptor)

        now = time.time() if now is None else now
        binding.frames_processed += 1
        binding.last_activity = now
        binding.last_expression = descriptor.expression
        self._expression_counts[binding.session_id][descriptor.expression] += 1
        self._touch_session(binding.session_id, now)
        self._total_frames += 1

        update = AnimationUpdate(
            session_id=binding.session_id,
            transform=transform,
            expression=descriptor.expression,
            timestamp=descriptor.timestamp,
            frame_id=descriptor.frame_id,
        )

        peers = sorted(self._session_index.get(binding.session_id, set()) - {connection_id})
        return [Delivery(connection_id, update)] + [Delivery(peer, update) for peer in peers]

    def on_stop(self, connection_id: str) -> Optional[SessionBinding]:
        """
        Unbind a connection. A no-op for unbound connections.

        Returns:
            The removed binding, or None if there was none.
        """
        binding = self._unbind(connection_id)
        if binding is not None:
            logger.info(
                f"Animation stopped: connection={connection_id} session={binding.session_id} "
                f"frames={binding.frames_processed}"
            )
        return binding

    def on_disconnect(self, connection_id: str) -> Optional[SessionBinding]:
        """Unbind a connection whose transport closed."""
        binding = self._unbind(connection_id)
        if binding is not None:
            logger.info(
                f"Connection {connection_id} disconnected from session {binding.session_id}"
            )
        return binding

    def sweep_inactive(self, now: Optional[float] = None) -> List[SessionBinding]:
        """
        Unbind every connection of sessions idle for longer than
        inactive_timeout_sec.

        A session stays active while any of its connections starts or
        sends frames, so a silent viewer of a live session is kept.

        Args:
            now: Current Unix time (defaults to time.time()).

        Returns:
            The removed bindings, grouped by session.
        """
        now = time.time() if now is None else now
        stale_sessions = sorted(
            session_id
            for session_id, last_activity in self._session_activity.items()
            if now - last_activity > self.inactive_timeout_sec
        )

        swept = []
        for session_id in stale_sessions:
            for connection_id in self.connections_for(session_id):
                swept.append(self._unbind(connection_id))
            logger.info(f"Cleaned inactive session {session_id}")
        if swept:
            logger.info(
                f"Session cleanup: {len(stale_sessions)} inactive session(s), "
                f"{len(swept)} connection(s) unbound"
            )

        return swept

    # ------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------

    def get_binding(self, connection_id: str) -> Optional[SessionBinding]:
        return self._bindings.get(connection_id)

    def connections_for(self, session_id: str) -> List[str]:
        """Connection ids currently bound to a session, sorted."""
        return sorted(self._session_index.get(session_id, set()))

    def get_session(self, session_id: str) -> Optional[SessionSummary]:
        """
        Summarize a session across its bound connections.

        Returns:
            SessionSummary, or None if no connection is bound to it.
        """
        connection_ids = self.connections_for(session_id)
        if not connection_ids:
            return None

        bindings = [self._bindings[c] for c in connection_ids]
        streamed = [b for b in bindings if b.last_expression is not None]
        latest = max(streamed, key=lambda b: b.last_activity, default=None)

        return SessionSummary(
            session_id=session_id,
            connection_ids=connection_ids,
            image_ids=sorted({b.image_id for b in bindings if b.image_id}),
            started_at=min(b.started_at for b in bindings),
            last_activity=self._session_activity[session_id],
            frames_processed=sum(b.frames_processed for b in bindings),
            expressions=dict(self._expression_counts.get(session_id, {})),
            last_expression=latest.last_expression if latest else None,
        )

    def stats(self) -> Dict[str, int]:
        """Counts of active connections, active sessions and frames processed."""
        return {
            "active_connections": len(self._bindings),
            "active_sessions": len(self._session_index),
            "total_frames": self._total_frames,
        }


def animate_once(
    engine: FaceTransformEngine,
    landmarks: Any,
    image_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    One-shot animation for non-streaming callers.

    Runs the engine without any session or broadcast semantics.

    Returns:
        Dict with transform, expression, detailedData, timestamp and imageId.
    """
    descriptor = engine.compute_descriptor(landmarks)
    transform = engine.compute_render_transform(descriptor)

    return {
        "transform": transform.to_dict(),
        "expression": descriptor.expression,
        "detailedData": descriptor.to_dict(),
        "timestamp": descriptor.timestamp,
        "imageId": image_id,
    }


# Singleton manager instance
_manager_instance: Optional[SessionManager] = None


def get_session_manager(config: Optional[Dict[str, Any]] = None) -> SessionManager:
    """
    Get or create the singleton session manager, bound to the shared engine.

    Args:
        config: Session configuration. Only used on first call.
                If None, uses the "session" section from core.config.
    """
    global _manager_instance

    if _manager_instance is None:
        from core.face_transform import get_engine

        if config is None:
            from core.config import get_session_config
            config = get_session_config()

        _manager_instance = SessionManager(get_engine(), config)

    return _manager_instance
