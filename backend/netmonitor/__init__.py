"""netmonitor - network reachability monitor."""

__version__ = "1.0.0"
