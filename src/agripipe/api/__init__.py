"""HTTP API for the agricultural insight pipeline."""
