"""
Agent Integrations - Order Pipeline Wiring
==========================================
Builds every agent from an explicit config, store factory and payment
gateway. Nothing here is a process-wide singleton: the HTTP app keeps one
OrderPipeline on app.state and tests build their own.

Usage:
    pipeline = OrderPipeline.build(config)
    await pipeline.startup()
    # ... serve ...
    await pipeline.shutdown()
"""

from typing import Optional

import structlog

from config import ServiceConfig
from pipeline.agents.cancellation import CancellationGuard
from pipeline.agents.delivery_simulator import DeliverySimulator, SimulatorRegistry, Sleep
from pipeline.agents.order_intake import OrderIntake
from pipeline.agents.payment_links import PaymentLinkManager
from pipeline.agents.reconciler import EventReconciler
from pipeline.agents.status_resolver import StatusResolver
from pipeline.agents.transitions import PaymentTransitions
from services.razorpay_client import IPaymentGateway, RazorpayClient
from storage.document_store import StoreFactory
from storage.repositories import DeliveryRepository, OrderRepository
from tasks.delivery_resume import resume_deliveries


class OrderPipeline:
    """
    Owns the repositories, the simulator registry and all agents.

    Usage:
        pipeline = OrderPipeline(config, StoreFactory("memory"), FakeGateway())
        order, link = await pipeline.intake.create_order(request)
    """

    def __init__(
        self,
        config: ServiceConfig,
        store_factory: StoreFactory,
        gateway: IPaymentGateway,
        sleep: Optional[Sleep] = None,
    ):
        self.config = config
        self.store_factory = store_factory
        self.gateway = gateway

        self.orders = OrderRepository(store_factory.create("orders"))
        self.deliveries = DeliveryRepository(store_factory.create("deliveries"))

        self.simulators = SimulatorRegistry()
        self.simulator = DeliverySimulator(self.orders, self.deliveries, config, sleep=sleep)

        self.transitions = PaymentTransitions(
            self.orders,
            on_revived=self.start_simulator,
            on_failed=self.stop_simulator,
        )
        self.links = PaymentLinkManager(self.orders, gateway, self.transitions, config)
        self.resolver = StatusResolver(self.orders, gateway, self.transitions)
        self.reconciler = EventReconciler(self.transitions, self.resolver, config)
        self.cancellation = CancellationGuard(
            self.orders,
            self.deliveries,
            self.simulators,
            resume_simulator=self.start_simulator,
        )
        self.intake = OrderIntake(
            self.orders,
            self.deliveries,
            self.links,
            self.start_simulator,
            config,
        )

        self._logger = structlog.get_logger().bind(component="order_pipeline")

    @classmethod
    def build(
        cls,
        config: ServiceConfig,
        store_factory: Optional[StoreFactory] = None,
        gateway: Optional[IPaymentGateway] = None,
    ) -> "OrderPipeline":
        """Default wiring from config: configured store backend + Razorpay."""
        store_factory = store_factory or StoreFactory(
            backend=config.STORE_BACKEND,
            redis_url=config.REDIS_URL,
            prefix=config.REDIS_KEY_PREFIX,
        )
        gateway = gateway or RazorpayClient(config)
        return cls(config, store_factory, gateway)

    async def start_simulator(self, order_id: str) -> bool:
        started = self.simulators.start(order_id, lambda: self.simulator.run(order_id))
        if started:
            self._logger.info("simulator_started", order_id=order_id)
        return started

    async def stop_simulator(self, order_id: str) -> bool:
        return await self.simulators.cancel(order_id)

    async def startup(self) -> int:
        """Resume unfinished deliveries. Returns how many were restarted."""
        self._logger.info("starting_pipeline", store_backend=self.store_factory.backend)
        resumed = 0
        if self.config.SIM_RESUME_ON_START:
            resumed = await resume_deliveries(self)
        self._logger.info("pipeline_started", resumed=resumed)
        return resumed

    async def shutdown(self) -> None:
        self._logger.info("stopping_pipeline")
        await self.simulators.shutdown()
        await self.gateway.close()
        await self.store_factory.close()
        self._logger.info("pipeline_stopped")

    async def health_check(self) -> dict:
        return {
            "store": await self.store_factory.ping(),
            "active_simulators": self.simulators.active_count,
        }
