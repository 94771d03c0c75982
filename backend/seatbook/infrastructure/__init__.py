"""
Infrastructure layer - external system integrations.
Keeps business logic clean from implementation details.
"""

from .redis_client import get_redis, close_redis, ping_redis, RedisClient
from .payment_gateway import MockPaymentGateway, RazorpayGateway

__all__ = ['get_redis', 'close_redis', 'ping_redis', 'RedisClient', 'MockPaymentGateway', 'RazorpayGateway']
