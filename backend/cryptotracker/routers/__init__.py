# API Routers

from . import crypto, health

__all__ = ["crypto", "health"]
