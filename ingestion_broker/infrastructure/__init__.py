"""Concrete collaborators for the broker's external interfaces."""

from ingestion_broker.infrastructure.http_transport import HttpIngestionTransport, HttpTransportConfig

__all__ = ["HttpIngestionTransport", "HttpTransportConfig"]
