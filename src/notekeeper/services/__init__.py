"""Service layer for notekeeper."""
