"""Bundled rule and signature presets (YAML data files)."""
