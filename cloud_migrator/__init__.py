"""Cloud Migrator: migrate a directory tree between cloud-sync mounts."""

__version__ = "1.0.0"
