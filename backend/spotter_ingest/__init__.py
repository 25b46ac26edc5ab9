"""Spotter Network loader: polls spotter reports into the central event store."""
