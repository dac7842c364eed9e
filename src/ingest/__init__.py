"""Raw log ingestion.

This package reads JSON log files from local paths or S3 prefixes and
appends their rows to the sequence-numbered raw append log.
"""
