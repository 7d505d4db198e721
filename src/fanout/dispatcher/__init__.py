"""Dispatcher — fans published events out to subscribed connections.

Learn: EventProcessor is the engine (one event → concurrent per-subscriber
branches). EventWorker feeds it from the Redis events channel, and
dispatcher.main runs that worker as its own process.
"""
