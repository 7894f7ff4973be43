"""
Ingestion Broker

Client-side resource broker and ingestion router: keeps a fresh, ranked pool of
ingestion queues, blob containers and an auth token, retries actions across
that pool, and routes each ingestion request between a low-latency streaming
path and a durable queued path.
"""

__version__ = "1.0.0"
