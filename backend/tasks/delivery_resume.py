"""
Delivery Resume - The Safety Net
================================
Startup task that finds deliveries a previous process left unfinished
(preparing or on_the_way) and restarts their simulators from the stored
position.

Orders that no longer exist, or were cancelled, are skipped.
"""

from typing import TYPE_CHECKING

import structlog

from pipeline.errors import OrderServiceError

if TYPE_CHECKING:
    from pipeline.agent_integrations import OrderPipeline

logger = structlog.get_logger(component="delivery_resume")


async def resume_deliveries(pipeline: "OrderPipeline") -> int:
    """
    Restart simulators for in-flight deliveries.

    Returns:
        Number of simulators started
    """
    try:
        records = await pipeline.deliveries.list_in_progress()
    except OrderServiceError as e:
        logger.error("resume_scan_failed", error=e.message)
        return 0

    if not records:
        logger.info("resume_nothing_in_flight")
        return 0

    logger.warning("resume_found_in_flight", count=len(records))

    resumed = 0
    for record in records:
        order = await pipeline.orders.get(record.order_id)
        if order is None or order.is_canceled:
            logger.info(
                "resume_skipped",
                order_id=record.order_id,
                reason="missing" if order is None else "cancelled",
            )
            continue

        if await pipeline.start_simulator(record.order_id):
            resumed += 1
            logger.info(
                "resume_started",
                order_id=record.order_id,
                delivery_status=record.delivery_status.value,
            )

    return resumed
