"""Maintenance reminder pipeline (scanner, job queue, email handler, ops API).

The scanner runs on a cron schedule inside the API process, or under Celery
beat, and enqueues one job per due scheduled maintenance. Jobs run on Celery
workers over Redis, or on an in-process thread pool when Redis is absent.
"""
