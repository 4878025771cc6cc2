"""
Real-time layer: connections, inbound commands and the coordinator.
"""
