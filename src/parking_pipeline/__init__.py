"""
Self-partitioning parking data ingestion worker.

Replicas discover each other through the Kubernetes API, split the
upstream index range between them without coordination, and publish
their filtered slice to Kafka.
"""

__version__ = "0.1.0"
