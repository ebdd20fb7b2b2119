"""Configuration and logging setup for prdnsd."""
