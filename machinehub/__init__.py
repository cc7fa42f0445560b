"""
MachineHub - coffee machine telemetry ingestion and tenant delivery.
"""
__version__ = "1.0.0"
