"""Sync publishers used by Django code (views, signals) to push realtime events."""
