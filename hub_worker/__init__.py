"""
MachineHub worker - background delivery and supplier polling.

Run with ``python -m hub_worker.main``.
"""
