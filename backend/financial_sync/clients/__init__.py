from .practice_store import PracticeStoreClient
from .ledger_store import LedgerStore
from .customer_directory import CustomerDirectory

__all__ = ['PracticeStoreClient', 'LedgerStore', 'CustomerDirectory']
