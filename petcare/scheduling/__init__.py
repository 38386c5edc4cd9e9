"""Appointment scheduling and resource reservation.

Models import the clock from here, so this package keeps its top level free
of model imports; use the submodules directly.
"""
