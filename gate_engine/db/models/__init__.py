"""Re-export all models so Base.metadata sees them."""

from gate_engine.db.models.baseline import Baseline
from gate_engine.db.models.gate_override import GateOverride
from gate_engine.db.models.gate_state import GateState
from gate_engine.db.models.order import Order

__all__ = [
    "Baseline",
    "GateOverride",
    "GateState",
    "Order",
]
