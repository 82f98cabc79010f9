"""Cron parsing, schedule storage and the tick loop that fires schedules."""
