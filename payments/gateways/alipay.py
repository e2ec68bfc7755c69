"""
Alipay Payment Gateway Adapter

Alipay is one of the world's largest third-party mobile and online payment
platforms, primarily serving mainland China.
Documentation: https://intl.alipay.com/doc/gr/hx6vzr
"""

import re
import time
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional, Tuple
import logging

from django.template.loader import render_to_string

from .alipay_client import AlipayApiError, AlipayClient, Credentials
from .base import (
    BaseGatewayAdapter,
    TransactionRecord,
    STATUS_APPROVED,
    STATUS_DECLINED,
    STATUS_ERROR,
    STATUS_PENDING,
    STATUS_VOID,
    serialize_invoices,
    unserialize_invoices,
)

logger = logging.getLogger(__name__)

TRADE_STATUS_MAP = {
    'TRADE_FINISHED': STATUS_APPROVED,
    'TRADE_REFUSE': STATUS_DECLINED,
    'TRADE_CANCEL': STATUS_VOID,
    'TRADE_PENDING': STATUS_PENDING,
}

# Body Alipay expects in reply to a verified notification
NOTIFY_ACKNOWLEDGMENT = 'Success'

_NUMERIC_RE = re.compile(r'^\s*[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?\s*$')


def map_trade_status(trade_status: Optional[str]) -> str:
    """Map an Alipay trade status to the platform's status vocabulary."""
    return TRADE_STATUS_MAP.get(trade_status, STATUS_ERROR)


def format_amount(amount) -> str:
    """Format an amount with exactly two decimal places."""
    return str(Decimal(str(amount)).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP))


def build_order_id(client_id, invoices: str = '') -> str:
    """Encode the client and the invoices being paid as ``client_id@invoices``."""
    return f"{client_id}@{invoices or int(time.time())}"


def parse_order_id(order_id: Optional[str]) -> Tuple[str, Optional[str]]:
    """
    Split an ``out_trade_no`` into the client ID and serialized invoices.

    A numeric suffix is the timestamp used when no invoices were paid.
    """
    parts = (order_id or '').split('@', 1)
    client_id = parts[0]
    invoices = parts[1] if len(parts) > 1 else None
    if invoices is not None and _NUMERIC_RE.match(invoices):
        invoices = None
    return client_id, invoices


class AlipayAdapter(BaseGatewayAdapter):
    """
    Alipay payment gateway implementation.

    Supports:
    - Cross-border (forex) trade payments through the hosted cashier page
    - Asynchronous notifications verified against Alipay
    """

    def _setup(self):
        self.client = AlipayClient(Credentials(
            merchant_uid=self.credentials['merchant_uid'],
            signature_key=self.credentials['signature_key'],
            sandbox=self.is_test_mode,
        ))

    @property
    def name(self) -> str:
        return "Alipay"

    def encryptable_fields(self) -> List[str]:
        return ['merchant_uid', 'signature_key']

    def verify_credentials(self) -> Tuple[bool, str]:
        """
        Verify Alipay credentials with an empty notification lookup.

        Alipay answers ILLEGAL_PARTNER / ILLEGAL_SIGN before it looks at the
        notification ID, so any plain answer means the credentials are good.
        """
        try:
            self.client.verify_notification('')
            return True, "Credentials verified successfully"
        except AlipayApiError as e:
            return False, e.message

    def build_process(
        self,
        contact: Dict,
        amount,
        invoice_amounts: List[Dict] = None,
        options: Dict = None
    ) -> Optional[str]:
        self.clear_errors()
        options = options or {}

        amount = format_amount(amount)

        invoices = ''
        if invoice_amounts:
            invoices = serialize_invoices(invoice_amounts)

        fields = {
            'subject': options.get('description'),
            'out_trade_no': build_order_id(contact['client_id'], invoices),
            'currency': self.currency,
            'total_fee': amount,
            'supplier': self.company_name,
            'notify_url': self.notify_url,
            'return_url': options.get('return_url'),
        }
        self.log(fields, 'input', True)

        try:
            request = self.client.request_payment(fields)
        except AlipayApiError as e:
            logger.error(f"Alipay payment request failed: {e.message}")
            self.log({'error': e.message, 'code': e.code}, 'output', False)
            self.set_errors({'internal': {'response': e.message}})
            return None

        if 'location' in request.headers:
            self.log(request.to_dict(), 'output', True)
            return self.build_form(request.url, request.params)

        self.log(request.to_dict(), 'output', False)
        return None

    def build_form(self, post_to: str, fields: Dict) -> str:
        """Render the auto-submitting form that forwards the payer to Alipay."""
        fields = dict(fields)
        signature = fields.pop('sign')

        return render_to_string('payments/alipay/process.html', {
            'post_to': post_to,
            'fields': fields,
            'signature': signature,
        })

    def validate(self, get: Dict, post: Dict) -> TransactionRecord:
        self.clear_errors()
        client_id, invoices = parse_order_id(post.get('out_trade_no'))

        try:
            verified = self.client.verify_notification(post.get('notify_id', ''))
        except AlipayApiError as e:
            logger.warning(f"Alipay notification could not be verified: {e.message}")
            self.set_errors({'internal': {'response': e.message}})
            verified = False

        status = STATUS_ERROR
        acknowledgment = None
        if verified:
            status = map_trade_status(post.get('trade_status'))
            acknowledgment = NOTIFY_ACKNOWLEDGMENT
        else:
            logger.warning(f"Untrusted Alipay notification for order {post.get('out_trade_no')}")

        self.log(post, 'output', status != STATUS_ERROR)

        return TransactionRecord(
            client_id=client_id,
            amount=post.get('total_fee'),
            currency=post.get('currency'),
            status=status,
            reference_id=None,
            transaction_id=post.get('trade_no'),
            invoices=unserialize_invoices(invoices),
            acknowledgment=acknowledgment
        )

    def success(self, get: Dict, post: Dict) -> TransactionRecord:
        self.clear_errors()
        client_id, invoices = parse_order_id(get.get('out_trade_no'))

        status = map_trade_status(get.get('trade_status'))

        self.log(get, 'output', status != STATUS_ERROR)

        return TransactionRecord(
            client_id=client_id,
            amount=get.get('total_fee'),
            currency=get.get('currency'),
            invoices=unserialize_invoices(invoices),
            status=status,
            transaction_id=get.get('trade_no')
        )

    def refund(self, reference_id, transaction_id, amount, notes=None):
        # AlipayClient.request_refund exists but is not wired up here yet
        self.set_errors(self.get_common_error('unsupported'))
