"""Utility modules for HiNATA."""

from hinata.utils.exceptions import (
    ConfigurationError,
    ConsistencyError,
    DuplicateError,
    HiNATAError,
    NotFoundError,
    StoreError,
    ValidationError,
)
from hinata.utils.id_generator import (
    generate_block_id,
    generate_note_item_id,
    generate_packet_id,
    generate_reference_id,
    generate_relation_id,
    generate_tag_id,
    generate_usage_id,
)
from hinata.utils.logger import get_logger, setup_logging
from hinata.utils.timeutils import ensure_utc, utc_now

__all__ = [
    # Logging
    "get_logger",
    "setup_logging",
    # ID Generators
    "generate_packet_id",
    "generate_block_id",
    "generate_note_item_id",
    "generate_reference_id",
    "generate_relation_id",
    "generate_tag_id",
    "generate_usage_id",
    # Time
    "utc_now",
    "ensure_utc",
    # Exceptions
    "HiNATAError",
    "StoreError",
    "ValidationError",
    "NotFoundError",
    "DuplicateError",
    "ConsistencyError",
    "ConfigurationError",
]
