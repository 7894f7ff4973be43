"""
Configuration Module

Centralized, type-safe configuration for the ingestion broker.

Components:
-----------
- **settings.py**: Pydantic-based configuration with environment variable loading
- **constants.py**: Enums, management command names and default bounds

Usage:
------
```python
from ingestion_broker.core.config import get_settings
from ingestion_broker.core.config.constants import Stage, RefreshState

settings = get_settings()
interval = settings.resource_manager.RESOURCES_REFRESH_INTERVAL
```

Environment Variables:
---------------------
```bash
RESOURCES_REFRESH_INTERVAL=3600
RESOURCES_MAX_STALENESS=21600
STREAMING_ATTEMPT_COUNT=3
QUEUING_POLICY_FACTOR=1.0
LOG_LEVEL=INFO
LOG_FORMAT=json
```
"""

from ingestion_broker.core.config.settings import Settings, get_settings, reload_settings

__all__ = ["Settings", "get_settings", "reload_settings"]
