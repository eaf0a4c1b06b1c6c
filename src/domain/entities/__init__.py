"""Domain entities package."""

from .instance_record import InstanceRecord

__all__ = ["InstanceRecord"]
