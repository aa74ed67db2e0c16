"""Provisioning for a TLS-terminated, autoscaled gRPC endpoint on AWS."""
