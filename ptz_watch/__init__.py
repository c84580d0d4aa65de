"""PTZ watch package.

This package contains modules for PTZ camera positioning, snapshot capture
into a date-partitioned archive, the session scheduler, the retention pruner,
and a Flask web API.
"""

# Nothing to export at package import time; modules provide the functionality.
__all__ = []
