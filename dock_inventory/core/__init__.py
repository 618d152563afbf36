"""Core services for dock-inventory: configuration, logging, detection and installers."""
