"""Configuration loading for Storage Guard."""
