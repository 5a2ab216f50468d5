# API Routers

from . import crypto, datasets, health, websocket, whale

__all__ = ["crypto", "datasets", "health", "websocket", "whale"]
