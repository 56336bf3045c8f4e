"""Domain layer: rule and entity models, domain exceptions."""
