"""Command-line interface for weathercache."""
