"""Multi-host progress monitor for pbqff and semp jobs."""

__version__ = "0.1.0"
