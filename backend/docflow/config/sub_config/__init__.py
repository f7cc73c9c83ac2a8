"""Registered config sections. Importing this package registers them."""

from docflow.config.sub_config import general  # noqa: F401
