"""Application services: payment persistence and integration resolution."""
