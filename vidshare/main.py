"""
Name: Process Entrypoint (vidshare.main)

Responsibilities:
  - Stable import path for the console script and `python -m vidshare`
  - Keep this module side-effect free; the runner does the wiring

Notes:
  - The FastAPI app is built at runtime by the runner (it needs a connected
    data store), so there is no module-level `app` to import here
"""

from vidshare.lifecycle.runner import main, serve

__all__ = ["main", "serve"]
