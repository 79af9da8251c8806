"""Chat transports for reaching the operator."""

from pixie.channels.base import OperatorChannel, OperatorHandler
from pixie.channels.formatting import TELEGRAM_MAX_LEN, split_message

__all__ = ["OperatorChannel", "OperatorHandler", "TELEGRAM_MAX_LEN", "split_message"]
