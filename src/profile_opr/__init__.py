"""Profile operations: install, remove, upgrade and info over a profile handle.

Package name uses 'profile_opr' (short for operations) to avoid collision
with Python's stdlib 'profile' module.
"""
