"""SQLAlchemy async persistence for the shipping engine."""
