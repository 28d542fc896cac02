"""authhub - JWT token issuance, validation and revocation."""

__version__ = "1.0.0"
