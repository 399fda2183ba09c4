"""Data store package for scamreg.

Thin SQLAlchemy Core helpers over the registry tables. Stores never open
their own transactions; callers pass the session of the unit of work they
are running in.
"""
