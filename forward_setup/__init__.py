"""Email forwarding setup tool: Forward Email domains, DNS records and aliases."""

__version__ = "1.0.0"
