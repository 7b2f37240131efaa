"""Domain models for lead matching."""
