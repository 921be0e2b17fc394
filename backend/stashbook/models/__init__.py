from .inventory import Product, Container, StockMovement, LedgerImmutableError, MOVEMENT_TYPES, MOVEMENT_REASONS
from .deposits import SequenceCounter, DepositRecord, WeeklyPaidAggregate, WeeklyPaidEntry

__all__ = [
    'Product', 'Container', 'StockMovement', 'LedgerImmutableError',
    'MOVEMENT_TYPES', 'MOVEMENT_REASONS',
    'SequenceCounter', 'DepositRecord', 'WeeklyPaidAggregate', 'WeeklyPaidEntry',
]
