"""
Payment Gateway Adapters for non-merchant (hosted page) payment processing.

Supported gateways:
- Alipay (cross-border forex trade)
"""

from .base import BaseGatewayAdapter, TransactionRecord
from .alipay import AlipayAdapter
from .alipay_client import AlipayApiError, AlipayClient, Credentials


def get_gateway_adapter(config, **kwargs):
    """
    Factory function to get the appropriate gateway adapter.

    Args:
        config: PaymentGatewayConfig instance
        **kwargs: request_path, company_name and notify_url for the adapter

    Returns:
        BaseGatewayAdapter subclass instance
    """
    gateway_name = config.gateway

    adapters = {
        'ALIPAY': AlipayAdapter,
    }

    adapter_class = adapters.get(gateway_name)
    if not adapter_class:
        raise ValueError(f"Unsupported gateway: {gateway_name}")

    return adapter_class(config, **kwargs)


__all__ = [
    'BaseGatewayAdapter',
    'TransactionRecord',
    'AlipayAdapter',
    'AlipayApiError',
    'AlipayClient',
    'Credentials',
    'get_gateway_adapter',
]
