from .financial_sync import router as financial_sync_router

__all__ = [
    'financial_sync_router',
]
