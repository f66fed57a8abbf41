from .users import User
from .ledger import PointsTransaction, ExternalTransaction
from .rewards import Reward
from .seasons import Season, MonthlyPoints
from .notifications import Notification
from .machines import Machine

__all__ = [
    'User',
    'PointsTransaction', 'ExternalTransaction',
    'Reward',
    'Season', 'MonthlyPoints',
    'Notification',
    'Machine',
]
