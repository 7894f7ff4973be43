"""Core layer: configuration, exceptions, logging, metrics, resilience and collaborator interfaces."""
