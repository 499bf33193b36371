"""
Command-line interface for sftp-ingest.
"""
