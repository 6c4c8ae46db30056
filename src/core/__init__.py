"""
Core logic for storage access.

This module is framework-agnostic - it doesn't import boto3, minio or any
other infrastructure concern. The storage service only sees the ports in
core.storage.ports, so quota rules can be tested with in-memory stores.
"""
