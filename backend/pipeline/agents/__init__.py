# Pipeline Agents
# ===============
# Order/payment reconciliation agents and the delivery simulator

from .cancellation import CancellationGuard, check_cancellable
from .delivery_simulator import (
    DeliverySimulator,
    SimulatorRegistry,
    advance_position,
    has_arrived,
)
from .order_intake import OrderIntake, parse_destination
from .payment_links import PaymentLinkManager, link_reference
from .reconciler import EventReconciler, compute_signature
from .status_resolver import StatusResolver
from .transitions import PaymentTransitions

__all__ = [
    # Payment state
    "PaymentTransitions",
    "PaymentLinkManager",
    "link_reference",
    "EventReconciler",
    "compute_signature",
    "StatusResolver",
    # Order lifecycle
    "OrderIntake",
    "parse_destination",
    "CancellationGuard",
    "check_cancellable",
    # Delivery
    "DeliverySimulator",
    "SimulatorRegistry",
    "advance_position",
    "has_arrived",
]
