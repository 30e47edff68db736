"""
Allowed deposit lot sizes.
"""

import structlog

from .contracts import SystemContract
from .errors import ValidationError

logger = structlog.get_logger()


class LotSizeRegistry:
    """
    Live view of the lot sizes the system contract currently allows.

    Nothing is cached; every call reads the contract.
    """

    def __init__(self, system: SystemContract):
        self.system = system

    async def available(self) -> list[int]:
        """Allowed lot sizes, in satoshis."""
        return [int(size) for size in await self.system.get_allowed_lot_sizes()]

    async def validate(self, lot_size: int) -> None:
        """Raise ValidationError unless ``lot_size`` is currently allowed."""
        if await self.system.is_allowed_lot_size(lot_size):
            return

        allowed = await self.available()
        logger.warning("lot_size_rejected", lot_size=lot_size, allowed=allowed)
        raise ValidationError(
            f"Lot size {lot_size} is not permitted; only one of "
            f"{','.join(str(size) for size in allowed)} can be used."
        )
