"""Real-time infrastructure — topic broker + WebSocket.

Learn: Events flow through two hops:
1. Services → Broker.publish(topic, ...) after the database commit
2. Broker → per-subscriber queue → WebSocket → client

With Redis configured, publish goes through a Redis channel and every
server process relays it to its own subscribers. Without Redis the
broker delivers in-process.
"""
