"""Pipeline orchestration: context, steps, operations and the runner."""
