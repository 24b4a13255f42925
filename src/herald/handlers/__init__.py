# Import handler modules so their decorators register with the dispatcher
from . import callback_handlers, command_handlers  # noqa: F401
from .dp import dp

__all__ = ["dp"]
