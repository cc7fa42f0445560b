"""
HTTP API for MachineHub.
"""
