"""Client lookups. Clients are maintained elsewhere; billing only reads them."""

from uuid import UUID

from clients.postgres_client import PostgresClient
from core.models import Client


class ClientStore:
    """SQL repository for clients (read-only)."""

    def __init__(self, postgres: PostgresClient):
        self.postgres = postgres

    def get(self, client_id: UUID) -> Client | None:
        row = self.postgres.execute_single(
            "SELECT * FROM clients WHERE id = %s",
            (client_id,)
        )
        if row is None:
            return None
        return Client.model_validate(row)
