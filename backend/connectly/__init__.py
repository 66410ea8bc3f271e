"""Connectly real-time chat synchronization backend."""
