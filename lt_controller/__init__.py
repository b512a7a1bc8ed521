"""Controller facade for job orchestration.

Re-exports the queue, scheduler, cooldown, stores and orchestrator.
"""

from lt_controller.api import *  # noqa: F401,F403
from lt_controller.api import __all__  # noqa: F401
