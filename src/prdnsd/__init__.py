"""prdnsd package: forwarding DNS resolver with a passive reverse-DNS cache."""

__version__ = "0.3.0"
