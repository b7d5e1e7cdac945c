"""
publisher-info-store — integration test package

Purpose
- Exercise the CLI end to end against real store files in temporary directories.
"""
