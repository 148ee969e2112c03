"""Waypoint — a small place-sharing API.

Users register and log in, share places (a name, a location, a photo)
and comment on each other's places. Every change is appended to an
activity log and pushed to real-time subscribers.
"""

__version__ = "0.1.0"
