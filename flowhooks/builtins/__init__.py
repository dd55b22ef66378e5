"""Hooks bundled with flowhooks and discovered at startup.

Each module exposes ``HOOK_CLASS`` and optionally ``NAME``; modules whose name
starts with an underscore are ignored.
"""
