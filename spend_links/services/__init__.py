from .advisor import AdvisorActionBridge, propose_action
from .expiry import ExpirySweeper
from .ledger import BalanceLedger, WalletService
from .links import LinkLifecycleEngine
from .notifications import LinkEventBroker, Subscription, link_topic, owner_topic
from .repository import LinkRepository
from .settlement import Disburser, SimulatedDisburser

__all__ = [
    "AdvisorActionBridge",
    "BalanceLedger",
    "Disburser",
    "ExpirySweeper",
    "LinkEventBroker",
    "LinkLifecycleEngine",
    "LinkRepository",
    "SimulatedDisburser",
    "Subscription",
    "WalletService",
    "link_topic",
    "owner_topic",
    "propose_action",
]
