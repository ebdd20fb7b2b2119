"""Request handling pipeline and the UDP / DNS-over-TLS listeners."""
