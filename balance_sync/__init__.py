"""Partner balance synchronization and threshold alerting."""

__version__ = "0.1.0"
