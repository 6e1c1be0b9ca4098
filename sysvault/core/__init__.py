"""Sysvault core: locking, path lists, archive/restore pipelines, retention."""
