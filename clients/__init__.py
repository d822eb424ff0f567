# Infrastructure clients
from clients.vault_client import (
    VaultClient,
    SecretNotFoundError,
    get_database_url,
    get_valkey_url,
    get_notification_config,
    get_gateway_config,
)
from clients.postgres_client import PostgresClient
from clients.valkey_client import ValkeyClient
from clients.notification_client import NotificationGatewayClient, NotificationGatewayError
