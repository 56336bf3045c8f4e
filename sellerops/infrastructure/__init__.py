"""Infrastructure: persistence, cooldown store, messaging, jobs and rule services."""
