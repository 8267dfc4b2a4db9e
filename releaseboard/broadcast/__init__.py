"""Live event delivery to board viewers.

``hub`` holds the session registry and fan-out; ``server`` exposes it over
a FastAPI WebSocket endpoint next to the thin REST routes.
"""
