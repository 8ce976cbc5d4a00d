"""Domain and database models for notekeeper."""
