"""Low-level installer driver.

Two modes, selected by the leading command token:
- dump-env: snapshot the installation environment into the run directory
- start-session: run an installation as a command-driven session over stdin/stdout

Core design goals:
- Destructive steps run strictly in order, one at a time
- Every step outcome is recorded and classified for the UI
- Test mode drives the same code paths from fixtures, without touching disks
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
