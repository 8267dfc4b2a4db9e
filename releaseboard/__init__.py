"""Releaseboard: client release tracking across Development, Staging and Production.

  - Release lifecycle state machine with skip-staging paths
  - Concurrent deployment-item runner streaming script output
  - Periodic scheduler that promotes and deploys due releases
  - WebSocket broadcast hub for live status, progress and logs
  - Rich terminal board and Typer CLI
"""

__version__ = "0.1.0"
__description__ = "Release pipeline board with live deployment updates"

__all__ = ["__version__"]
