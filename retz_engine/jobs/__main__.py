"""
Entry point for running a task via python -m retz_engine.jobs

Usage:
    python -m retz_engine.jobs --task task.yaml --attempt-id 1 --task-name build \
        --client-factory mypkg.retz:make_client
    python -m retz_engine.jobs --task task.yaml --attempt-id 1 --task-name build \
        --redis-url redis://localhost:6379
"""

from retz_engine.jobs.runner import main

if __name__ == "__main__":
    main()
