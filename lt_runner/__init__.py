"""Runner facade for loadtest-orchestrator.

Re-exports the execution backends, job context, result reducer and parameter
injector used by the controller.
"""

from lt_runner.api import *  # noqa: F401,F403
from lt_runner.api import __all__  # noqa: F401
