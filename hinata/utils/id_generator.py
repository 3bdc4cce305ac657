"""
ID generation utilities for HiNATA.

Provides consistent ID generation for all entity types:
- Packets: plain UUID4 (the packet id is validated as a UUID)
- Knowledge blocks: kb_xxx
- Note items: ni_xxx
- Block references: ref_xxx
- Relations: rel_xxx
- Tags: tag_xxx
- Tag usage records: use_xxx
"""

from uuid import uuid4


def generate_packet_id() -> str:
    """
    Generate unique Packet ID.

    Returns:
        Canonical UUID4 string
    """
    return str(uuid4())


def generate_block_id() -> str:
    """
    Generate unique Knowledge Block ID.

    Returns:
        ID in format "kb_xxx" where xxx is 12 hex characters
    """
    return f"kb_{uuid4().hex[:12]}"


def generate_note_item_id() -> str:
    """Generate unique Note Item ID ("ni_xxx")."""
    return f"ni_{uuid4().hex[:12]}"


def generate_reference_id() -> str:
    """Generate unique block reference ID ("ref_xxx")."""
    return f"ref_{uuid4().hex[:12]}"


def generate_relation_id() -> str:
    """
    Generate unique Relation ID.

    Returns:
        ID in format "rel_xxx" where xxx is 12 hex characters
    """
    return f"rel_{uuid4().hex[:12]}"


def generate_tag_id() -> str:
    """
    Generate unique Tag ID.

    Returns:
        ID in format "tag_xxx" where xxx is 12 hex characters
    """
    return f"tag_{uuid4().hex[:12]}"


def generate_usage_id() -> str:
    """Generate unique tag usage record ID ("use_xxx")."""
    return f"use_{uuid4().hex[:12]}"
