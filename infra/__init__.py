"""Infrastructure modules for the autonomy loop"""

from .metrics import MetricsRecorder, CycleStats  # noqa: F401
from .healthcheck import HealthServer  # noqa: F401
from .ledger import LedgerClient, ContractCall, TxReceipt  # noqa: F401
from .credits_api import CreditsClient, PurchaseIntent  # noqa: F401
from .gateway import GatewayClient  # noqa: F401

__all__ = [
	"MetricsRecorder",
	"CycleStats",
	"HealthServer",
	"LedgerClient",
	"ContractCall",
	"TxReceipt",
	"CreditsClient",
	"PurchaseIntent",
	"GatewayClient",
]
