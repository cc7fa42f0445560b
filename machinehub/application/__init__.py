"""
Application layer for MachineHub.
"""
