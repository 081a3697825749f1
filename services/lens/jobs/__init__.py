"""
Batch jobs for the CityLens recommender.

These run as standalone Python scripts via cron / Cloud Scheduler,
NOT inside the FastAPI process.

Usage:
    python -m services.lens.jobs.cache_warmer --city "New York" --mood electric
"""
