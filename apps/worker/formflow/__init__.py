"""Form intake worker: polls survey submissions and drives client workflows."""
