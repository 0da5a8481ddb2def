"""Scheduled work: cron jobs and the periodic heartbeat."""
