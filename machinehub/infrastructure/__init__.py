"""
Infrastructure layer for MachineHub.
"""
