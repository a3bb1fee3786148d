"""Common infrastructure shared across the pipeline: errors, logging, resilience."""
