"""Relay bridge that lets two chat clients co-drive one AI-character conversation."""
