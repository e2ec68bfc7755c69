"""
Base Gateway Adapter providing a common interface for non-merchant payment gateways.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Dict, List, Optional, Tuple
import json
import logging

logger = logging.getLogger(__name__)


# Platform transaction-status vocabulary
STATUS_APPROVED = 'approved'
STATUS_DECLINED = 'declined'
STATUS_VOID = 'void'
STATUS_PENDING = 'pending'
STATUS_RECONCILED = 'reconciled'
STATUS_REFUNDED = 'refunded'
STATUS_RETURNED = 'returned'
STATUS_ERROR = 'error'

TRANSACTION_STATUSES = [
    STATUS_APPROVED,
    STATUS_DECLINED,
    STATUS_VOID,
    STATUS_PENDING,
    STATUS_RECONCILED,
    STATUS_REFUNDED,
    STATUS_RETURNED,
    STATUS_ERROR,
]

COMMON_ERRORS = {
    'unsupported': 'The requested operation is not supported by this gateway.',
    'general': 'An unexpected error occurred while processing the transaction.',
}


class TransactionRecord:
    """Standardized transaction data handed back to the billing platform."""

    def __init__(
        self,
        client_id: str,
        status: str = STATUS_ERROR,
        amount: Optional[str] = None,
        currency: Optional[str] = None,
        transaction_id: Optional[str] = None,
        invoices: List[Dict] = None,
        reference_id: Optional[str] = None,
        acknowledgment: Optional[str] = None
    ):
        self.client_id = client_id
        self.status = status
        self.amount = amount
        self.currency = currency
        self.transaction_id = transaction_id
        self.invoices = invoices or []
        self.reference_id = reference_id
        # Body to echo back to the gateway, when it expects one
        self.acknowledgment = acknowledgment

    @property
    def is_error(self) -> bool:
        return self.status == STATUS_ERROR

    def to_dict(self) -> Dict:
        return {
            'client_id': self.client_id,
            'amount': self.amount,
            'currency': self.currency,
            'status': self.status,
            'reference_id': self.reference_id,
            'transaction_id': self.transaction_id,
            'invoices': self.invoices,
        }


def serialize_invoices(invoices: List[Dict]) -> str:
    """
    Serialize invoice allocations as ``id1=amount1|id2=amount2``.

    Args:
        invoices: list of dicts with ``id`` and ``amount``
    """
    return '|'.join(f"{invoice['id']}={invoice['amount']}" for invoice in invoices)


def unserialize_invoices(value: Optional[str]) -> List[Dict]:
    """Parse an ``id1=amount1|id2=amount2`` string, skipping malformed pairs."""
    invoices = []
    for pair in (value or '').split('|'):
        parts = pair.split('=', 1)
        if len(parts) != 2:
            continue
        invoices.append({'id': parts[0], 'amount': parts[1]})
    return invoices


class BaseGatewayAdapter(ABC):
    """
    Abstract base class for non-merchant gateway adapters.

    The payer is sent to the gateway's hosted page; the result comes back
    through an asynchronous notification (``validate``) and a browser
    redirect (``success``).
    """

    def __init__(self, config, request_path: str = None, company_name: str = '', notify_url: str = ''):
        """
        Initialize the adapter with gateway configuration.

        Args:
            config: PaymentGatewayConfig instance containing credentials
            request_path: path of the request being served, recorded in the audit log
            company_name: merchant name shown on the gateway's pages
            notify_url: absolute URL of the notification callback
        """
        self.config = config
        self.credentials = config.get_credentials()
        self.is_test_mode = config.is_test_mode
        self.currency = getattr(config, 'currency', None) or None
        self.request_path = request_path
        self.company_name = company_name
        self.notify_url = notify_url
        self._errors = {}
        self._setup()

    def _setup(self):
        """Optional setup hook for subclasses."""
        pass

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the gateway name."""
        pass

    @abstractmethod
    def verify_credentials(self) -> Tuple[bool, str]:
        """
        Verify that the configured credentials are valid.

        Returns:
            Tuple of (is_valid, message)
        """
        pass

    @abstractmethod
    def build_process(
        self,
        contact: Dict,
        amount: Decimal,
        invoice_amounts: List[Dict] = None,
        options: Dict = None
    ) -> Optional[str]:
        """
        Build the markup that sends the payer to the gateway.

        Args:
            contact: contact info, ``client_id`` is required
            amount: amount to charge
            invoice_amounts: invoices covered by the payment, each with ``id`` and ``amount``
            options: ``description`` and ``return_url``

        Returns:
            HTML form, or None when the gateway refused the request
        """
        pass

    @abstractmethod
    def validate(self, get: Dict, post: Dict) -> TransactionRecord:
        """Validate an asynchronous notification from the gateway."""
        pass

    @abstractmethod
    def success(self, get: Dict, post: Dict) -> TransactionRecord:
        """Read the transaction data the payer returns with."""
        pass

    def capture(self, reference_id, transaction_id, amount, invoice_amounts=None):
        self.set_errors(self.get_common_error('unsupported'))

    def void(self, reference_id, transaction_id, notes=None):
        self.set_errors(self.get_common_error('unsupported'))

    def refund(self, reference_id, transaction_id, amount, notes=None):
        self.set_errors(self.get_common_error('unsupported'))

    def set_currency(self, currency: str):
        """Set the ISO 4217 currency code used for subsequent payments."""
        self.currency = currency

    def encryptable_fields(self) -> List[str]:
        """Settings fields stored encrypted."""
        return []

    def errors(self) -> Dict:
        return self._errors

    def set_errors(self, errors: Dict):
        self._errors = errors

    def clear_errors(self):
        self._errors = {}

    def get_common_error(self, key: str) -> Dict:
        return {key: {'response': COMMON_ERRORS.get(key, COMMON_ERRORS['general'])}}

    def log(self, data, direction: str, success: bool = False):
        """
        Record a gateway exchange in the audit log.

        Args:
            data: request/response payload
            direction: 'input' or 'output'
            success: whether the exchange succeeded
        """
        from payments.models import GatewayLog

        serialized = json.dumps(data, default=str, sort_keys=True)
        logger.info(
            f"{self.name} {direction} on {self.request_path or '-'} "
            f"({'success' if success else 'failure'})"
        )
        if self.is_test_mode:
            logger.debug(f"{self.name} {direction} data: {serialized}")

        GatewayLog.objects.create(
            gateway_config=self.config if getattr(self.config, 'pk', None) else None,
            url=self.request_path or '',
            direction=direction,
            success=success,
            data=serialized,
        )
