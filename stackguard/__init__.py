"""Stop docker compose stacks around a backup command and bring them back afterwards."""

__version__ = '0.1.0'
