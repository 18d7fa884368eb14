"""Configuration, consolidation and export."""
