# modelbatch/cli/commands: Command modules for the modelbatch CLI.

from .report import report
from .run import run
from .validate import validate

__all__ = ["report", "run", "validate"]
