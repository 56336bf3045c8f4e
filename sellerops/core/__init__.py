"""Core: settings, constants, lifespan and composition root."""
