"""Nix command-line adapter."""
