from .errors import GentError
from .parser import parse
from .runtime import Runtime

__all__ = ["GentError", "Runtime", "parse"]
__version__ = "0.1.0"
