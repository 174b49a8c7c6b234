"""Connection persistence on top of injected load/save capabilities."""

import logging
from typing import Callable, Optional

from pydantic import ValidationError

from schemas.reconciliation import Connection
from services.account_matcher import apply_connection_links

logger = logging.getLogger(__name__)


class ConnectionStore:
    """Reads and replaces the whole list of linked connections.

    ``load`` returns the stored list of connection documents and ``save``
    replaces it. Documents that fail validation are logged and dropped
    on read rather than failing the whole list.
    """

    def __init__(self, load: Callable[[], list], save: Callable[[list], None]):
        self._load = load
        self._save = save

    def get_connections(self) -> list[Connection]:
        connections = []
        for doc in self._load() or []:
            try:
                connections.append(Connection.model_validate(doc))
            except ValidationError as e:
                logger.warning("Skipping malformed connection document: %s", e)
        return connections

    def get_connection(self, connection_id: str) -> Optional[Connection]:
        return next((c for c in self.get_connections() if c.id == connection_id), None)

    def save_connections(self, connections: list[Connection]) -> None:
        self._save([c.to_document() for c in connections])

    def upsert_connection(self, connection: Connection) -> None:
        """Replace the stored connection with the same id, or append it."""
        connections = self.get_connections()
        for i, existing in enumerate(connections):
            if existing.id == connection.id:
                connections[i] = connection
                break
        else:
            connections.append(connection)
        self.save_connections(connections)

    def save_connection_links(self, connection: Connection) -> bool:
        """Persist link ids from an in-memory connection.

        Returns False when the connection is not stored.
        """
        connections = self.get_connections()
        for i, existing in enumerate(connections):
            if existing.id == connection.id:
                connections[i] = apply_connection_links(existing, connection)
                self.save_connections(connections)
                return True
        return False

    def remove_connection(
        self,
        connection_id: str,
        revoke: Callable[[str], None] | None = None,
    ) -> bool:
        """Delete a connection, revoking its credential first when possible.

        Revocation is best effort: a failure is logged and the local
        record is removed anyway. Returns False for an unknown id.
        """
        connections = self.get_connections()
        target = next((c for c in connections if c.id == connection_id), None)
        if target is None:
            return False

        if revoke is not None and target.access_credential:
            try:
                revoke(target.access_credential)
            except Exception as e:
                logger.warning(
                    "Failed to revoke credential for connection %s: %s", connection_id, e
                )

        self.save_connections([c for c in connections if c.id != connection_id])
        logger.info("Removed connection %s (%s)", connection_id, target.institution_name)
        return True
