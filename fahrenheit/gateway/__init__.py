"""Gateway: envelopes, route resolution, sender authorization and dispatch."""
