"""Repository layer: the SQL the fridge service is allowed to run.

Every statement lives in `statements.py`, so the connection engine never
carries SQL strings of its own.
"""
