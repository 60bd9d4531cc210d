"""SQLAlchemy persistence for flows."""
