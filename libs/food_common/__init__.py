"""Shared event-choreography layer for the food delivery services."""
