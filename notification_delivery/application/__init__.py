"""Application layer: delivery orchestration."""

from .dispatcher import DeliveryDispatcher, QueueProducer

__all__ = ["DeliveryDispatcher", "QueueProducer"]
