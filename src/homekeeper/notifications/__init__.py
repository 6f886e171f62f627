"""Notification scheduling, content, engagement and optimization."""
