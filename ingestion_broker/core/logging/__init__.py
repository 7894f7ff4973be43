from .logger import (
    clear_operation_id,
    get_logger,
    get_operation_id,
    log_stage,
    redact_secrets_from_text,
    reset_operation_id,
    set_operation_id,
    setup_logging,
)

__all__ = [
    "clear_operation_id",
    "get_logger",
    "get_operation_id",
    "log_stage",
    "redact_secrets_from_text",
    "reset_operation_id",
    "set_operation_id",
    "setup_logging",
]
