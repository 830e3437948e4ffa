"""deliveryscope: delivery verification for outbound conversation logs."""

__version__ = "0.1.0"
