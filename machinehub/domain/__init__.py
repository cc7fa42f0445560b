"""
Domain layer for MachineHub.
"""
