"""Packet storage."""

from hinata.core.packet_store.packet_store import PacketStore

__all__ = ["PacketStore"]
