"""Real-time rooms, broadcast and presence relay."""
